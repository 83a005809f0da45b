"""Tests for listing and searching messages."""

import asyncio
import logging

import pytest

from apple_mail_agent.config import Settings
from apple_mail_agent.directory import MailboxDirectory
from apple_mail_agent.errors import BridgeUnavailable, NoInboxFound, OperationFailed
from apple_mail_agent.models import LOCAL_ACCOUNT, Message
from apple_mail_agent.query import EmailQueryEngine, rank, relevance

from conftest import make_message


@pytest.fixture
def engine(fake_bridge) -> EmailQueryEngine:
    return EmailQueryEngine(fake_bridge, MailboxDirectory(fake_bridge), Settings(fetch_cap=200))


def ids(messages):
    return [m.message_id for m in messages]


class TestMailboxResolution:
    @pytest.mark.asyncio
    async def test_default_reads_every_inbox(self, engine, fake_bridge):
        await engine.list()
        fetched = {call[1] for call in fake_bridge.calls_to("fetch_messages")}
        assert fetched == {("iCloud", "INBOX"), ("Work", "Inbox")}

    @pytest.mark.asyncio
    async def test_account_only_reads_its_inbox(self, engine, fake_bridge):
        messages = await engine.list(account_name="Work")
        assert ids(messages) == ["w1", "w2"]
        assert [call[1] for call in fake_bridge.calls_to("fetch_messages")] == [("Work", "Inbox")]

    @pytest.mark.asyncio
    async def test_account_without_inbox_raises(self, engine, fake_bridge):
        fake_bridge.add_account("Archive Only", ["Sent", "Old Stuff"])

        with pytest.raises(NoInboxFound) as excinfo:
            await engine.list(account_name="Archive Only")
        assert "Archive Only" in str(excinfo.value)
        assert "Sent, Old Stuff" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_unknown_account_names_it(self, engine):
        with pytest.raises(NoInboxFound, match="Work2"):
            await engine.list(account_name="Work2")

    @pytest.mark.asyncio
    async def test_mailbox_only_matches_across_accounts(self, engine, fake_bridge):
        messages = await engine.list(mailbox_name="receipts")
        assert ids(messages) == ["r1", "r2"]
        fetched = {call[1] for call in fake_bridge.calls_to("fetch_messages")}
        assert fetched == {("iCloud", "Receipts"), (LOCAL_ACCOUNT, "Receipts")}

    @pytest.mark.asyncio
    async def test_account_and_mailbox_reads_exactly_that_one(self, engine, fake_bridge):
        messages = await engine.list(account_name="Work", mailbox_name="Projects")
        assert ids(messages) == ["p1"]
        assert messages[0].location == "Work - Projects"

    @pytest.mark.asyncio
    async def test_no_matching_mailbox_returns_empty(self, engine, fake_bridge, caplog):
        with caplog.at_level(logging.WARNING):
            messages = await engine.list(mailbox_name="Nowhere")
        assert messages == []
        assert fake_bridge.calls_to("fetch_messages") == []
        assert "No mailboxes identified" in caplog.text


class TestListing:
    @pytest.mark.asyncio
    async def test_newest_first_with_undated_last(self, engine):
        messages = await engine.list(limit=None)
        assert ids(messages) == ["81506", "w1", "81507", "w2", "81508"]

    @pytest.mark.asyncio
    async def test_limit_caps_results(self, engine):
        assert ids(await engine.list(limit=2)) == ["81506", "w1"]
        assert await engine.list(limit=0) == []

    @pytest.mark.asyncio
    async def test_default_limit_is_25(self, engine, fake_bridge):
        fake_bridge.put(
            "Work", "Inbox", *[make_message(f"bulk{i}", f"Bulk {i}", "bulk@example.com", hours_ago=100 + i) for i in range(40)]
        )
        assert len(await engine.list()) == 25

    @pytest.mark.asyncio
    async def test_same_message_from_two_paths_appears_once(self, engine, fake_bridge):
        duplicate = make_message("81506", "Flight itinerary", "airline@example.com", hours_ago=1)
        fake_bridge.put("Work", "Inbox", duplicate)

        messages = await engine.list(limit=None)
        assert ids(messages).count("81506") == 1
        # first occurrence wins
        assert next(m for m in messages if m.message_id == "81506").account == "iCloud"

    @pytest.mark.asyncio
    async def test_read_and_flag_filters(self, engine):
        assert ids(await engine.list(is_read=True)) == ["81507", "w2"]
        assert ids(await engine.list(is_read=False, is_flagged=True)) == ["w1"]
        assert "w1" not in ids(await engine.list(is_flagged=False))

    @pytest.mark.asyncio
    async def test_failed_mailbox_fetch_is_isolated(self, engine, fake_bridge):
        fake_bridge.fail_fetch.add(("iCloud", "INBOX"))
        messages = await engine.list()
        assert ids(messages) == ["w1", "w2"]

    @pytest.mark.asyncio
    async def test_timed_out_mailbox_is_isolated(self, engine, fake_bridge):
        original = fake_bridge.fetch_messages

        async def timing_out_icloud(mailbox, cap):
            if mailbox.account == "iCloud":
                raise OperationFailed("Mail script timed out after 3 attempts. Apple Mail may be busy.")
            return await original(mailbox, cap)

        fake_bridge.fetch_messages = timing_out_icloud
        assert ids(await engine.list()) == ["w1", "w2"]

    @pytest.mark.asyncio
    async def test_losing_mail_fails_the_listing_after_siblings_finish(self, engine, fake_bridge):
        fake_bridge.unavailable_fetch.add(("iCloud", "INBOX"))
        finished = []
        original = fake_bridge.fetch_messages

        async def slow_fetch(mailbox, cap):
            if mailbox.account == "Work":
                await asyncio.sleep(0.01)
                finished.append(mailbox.key)
            return await original(mailbox, cap)

        fake_bridge.fetch_messages = slow_fetch

        with pytest.raises(BridgeUnavailable):
            await engine.list()
        assert finished == [("Work", "Inbox")]

    @pytest.mark.asyncio
    async def test_fetch_cap_is_passed_to_bridge(self, fake_bridge):
        engine = EmailQueryEngine(fake_bridge, MailboxDirectory(fake_bridge), Settings(fetch_cap=1))
        messages = await engine.list(account_name="Work")
        assert ids(messages) == ["w1"]
        assert fake_bridge.calls_to("fetch_messages")[0][2] == 1


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_matches_subject(self, engine):
        assert ids(await engine.list(search_term="itinerary")) == ["81506"]

    @pytest.mark.asyncio
    async def test_search_matches_sender(self, engine):
        assert ids(await engine.list(search_term="python.org")) == ["81507"]

    @pytest.mark.asyncio
    async def test_search_tolerates_typos(self, engine):
        assert ids(await engine.list(search_term="itinerery")) == ["81506"]

    @pytest.mark.asyncio
    async def test_search_without_match_is_empty(self, engine):
        assert await engine.list(search_term="zyxwvq") == []

    @pytest.mark.asyncio
    async def test_blank_search_is_ignored(self, engine):
        assert len(await engine.list(search_term="   ")) == 5

    def test_rank_orders_by_score_then_input_order(self):
        messages = [
            Message(message_id="a", subject="Report for March", sender="x@example.com"),
            Message(message_id="b", subject="Quarterly report", sender="y@example.com"),
            Message(message_id="c", subject="Lunch", sender="z@example.com"),
        ]
        ranked = rank(messages, "report", threshold=80)
        assert ids(ranked) == ["a", "b"]
        assert relevance("report", messages[2]) < 80
