"""Listing and searching messages across mailboxes."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from rapidfuzz import fuzz, utils

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.config import Settings
from apple_mail_agent.directory import DirectorySnapshot, MailboxDirectory
from apple_mail_agent.errors import BridgeUnavailable, MailAgentError, NoInboxFound
from apple_mail_agent.fanout import gather_settled
from apple_mail_agent.models import Mailbox, Message

logger = logging.getLogger(__name__)

INBOX = "inbox"
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def resolve_mailboxes(
    snapshot: DirectorySnapshot,
    account_name: Optional[str] = None,
    mailbox_name: Optional[str] = None,
) -> List[Mailbox]:
    """
    Pick the mailboxes a listing should read.

    1. account and mailbox: exactly that mailbox
    2. account only: that account's Inbox (case-insensitive)
    3. mailbox only: every mailbox with that name, any account
    4. neither: every Inbox

    Raises:
        NoInboxFound: an account was given without a mailbox and it has no Inbox
    """
    if account_name and mailbox_name:
        existing = snapshot.find(account_name, mailbox_name)
        selected = [existing or Mailbox(account=account_name, name=mailbox_name)]
    elif account_name:
        inboxes = [m for m in snapshot.mailboxes_for(account_name) if m.is_named(INBOX)]
        if not inboxes:
            raise NoInboxFound(account_name, [m.name for m in snapshot.mailboxes_for(account_name)])
        selected = inboxes[-1:]
    elif mailbox_name:
        selected = snapshot.named(mailbox_name)
    else:
        selected = snapshot.named(INBOX)

    unique = []
    seen = set()
    for mailbox in selected:
        if mailbox.key not in seen:
            seen.add(mailbox.key)
            unique.append(mailbox)
    return unique


def relevance(term: str, message: Message) -> float:
    """Best fuzzy score (0-100) of the term against subject and sender."""
    return max(
        fuzz.partial_ratio(term, message.subject, processor=utils.default_process),
        fuzz.partial_ratio(term, message.sender, processor=utils.default_process),
    )


def rank(messages: List[Message], term: str, threshold: float) -> List[Message]:
    """Drop messages scoring below ``threshold``; best matches first, ties keep their order."""
    scored = [(relevance(term, message), message) for message in messages]
    kept = [(score, message) for score, message in scored if score >= threshold]
    kept.sort(key=lambda pair: pair[0], reverse=True)
    return [message for _, message in kept]


def dedupe(messages: List[Message]) -> List[Message]:
    seen = set()
    unique = []
    for message in messages:
        if message.message_id in seen:
            continue
        seen.add(message.message_id)
        unique.append(message)
    return unique


def newest_first(messages: List[Message]) -> List[Message]:
    return sorted(messages, key=lambda m: m.date_received or _OLDEST, reverse=True)


class EmailQueryEngine:
    def __init__(
        self,
        bridge: MailBridge,
        directory: MailboxDirectory,
        settings: Optional[Settings] = None,
    ):
        self.bridge = bridge
        self.directory = directory
        self.settings = settings or Settings()

    async def list(
        self,
        search_term: Optional[str] = None,
        limit: Optional[int] = 25,
        account_name: Optional[str] = None,
        mailbox_name: Optional[str] = None,
        is_read: Optional[bool] = None,
        is_flagged: Optional[bool] = None,
    ) -> List[Message]:
        """
        List messages, newest first.

        Args:
            search_term: Fuzzy-matched against subject and sender; non-matches are dropped
            limit: Maximum messages to return; None for no cap
            account_name: Restrict to this account
            mailbox_name: Restrict to mailboxes with this name
            is_read: Keep only read (True) or unread (False) messages
            is_flagged: Keep only flagged (True) or unflagged (False) messages

        Returns:
            Matching messages. Empty when no mailbox matches.
        """
        snapshot = await self.directory.snapshot()
        mailboxes = resolve_mailboxes(snapshot, account_name, mailbox_name)
        if not mailboxes:
            logger.warning("No mailboxes identified to fetch emails from.")
            return []

        batches = await gather_settled(self._fetch(mailbox) for mailbox in mailboxes)
        messages = dedupe([message for batch in batches for message in batch])
        messages = newest_first(messages)

        if search_term and search_term.strip():
            messages = rank(messages, search_term.strip(), self.settings.search_threshold)

        if is_read is not None:
            messages = [m for m in messages if m.is_read == is_read]
        if is_flagged is not None:
            messages = [m for m in messages if m.is_flagged == is_flagged]

        if limit is not None:
            messages = messages[: max(0, limit)]
        return messages

    async def _fetch(self, mailbox: Mailbox) -> List[Message]:
        try:
            messages = await self.bridge.fetch_messages(mailbox, self.settings.fetch_cap)
        except BridgeUnavailable:
            raise
        except MailAgentError as e:
            logger.warning(f"Could not list messages in {mailbox.path}: {e}")
            return []
        return [
            m.model_copy(update={"account": mailbox.account, "mailbox": mailbox.name})
            for m in messages
        ]
