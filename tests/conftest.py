"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.config import Settings
from apple_mail_agent.errors import BridgeUnavailable, OperationFailed
from apple_mail_agent.models import LOCAL_ACCOUNT, Account, DraftHandle, Mailbox, Message
from apple_mail_agent.runtime import MailRuntime

BASE_DATE = datetime(2026, 2, 14, 10, 0, tzinfo=timezone.utc)


def make_message(message_id: str, subject: str, sender: str, hours_ago: Optional[int] = 0, **kwargs) -> Message:
    date = None if hours_ago is None else BASE_DATE - timedelta(hours=hours_ago)
    return Message(
        message_id=message_id,
        subject=subject,
        sender=sender,
        date_received=date,
        is_read=kwargs.pop("is_read", False),
        is_flagged=kwargs.pop("is_flagged", False),
        **kwargs,
    )


class FakeBridge(MailBridge):
    """In-memory Mail: accounts, mailboxes and messages, recording every call."""

    def __init__(self):
        self.accounts: List[Account] = []
        self.store: Dict[Tuple[str, str], List[Message]] = {}
        self.local: List[str] = []
        self.calls: List[tuple] = []
        self.available = True
        self.launchable = True
        self.fail_fetch: set = set()
        self.fail_lookup: set = set()
        self.archive_supported = True
        self.lose_in_trash = False
        self.fail_move_ids: set = set()
        self.drafts: Dict[str, dict] = {}
        self.reply_contents: List[str] = []
        self.fail_attach = False
        self.fail_reply_ids: set = set()
        self.unavailable_ids: set = set()
        self.unavailable_move_ids: set = set()
        self.unavailable_fetch: set = set()
        self.report_draft_id = True

    # setup helpers

    def add_account(self, name: str, mailboxes: List[str], enabled: bool = True) -> None:
        self.accounts.append(Account(name=name, enabled=enabled))
        for mailbox in mailboxes:
            self.store.setdefault((name, mailbox), [])

    def add_local(self, mailbox: str) -> None:
        self.local.append(mailbox)
        self.store.setdefault((LOCAL_ACCOUNT, mailbox), [])

    def put(self, account: str, mailbox: str, *messages: Message) -> None:
        self.store.setdefault((account, mailbox), []).extend(messages)

    def calls_to(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def where(self, message_id: str) -> List[Tuple[str, str]]:
        return [key for key, messages in self.store.items() if any(m.message_id == message_id for m in messages)]

    # MailBridge

    async def ensure_available(self) -> None:
        self.calls.append(("ensure_available",))
        if not self.available:
            if not self.launchable:
                raise BridgeUnavailable("Could not activate Mail app. Please start it manually.")
            self.available = True

    async def read_directory(self):
        self.calls.append(("read_directory",))
        mailboxes = []
        for account in self.accounts:
            if not account.enabled:
                continue
            for (owner, name), messages in self.store.items():
                if owner != account.name:
                    continue
                entry = {"account": owner, "name": name}
                if name.lower() == "inbox":
                    entry["total_count"] = len(messages)
                    entry["unread_count"] = sum(1 for m in messages if not m.is_read)
                mailboxes.append(Mailbox(**entry))
        for name in self.local:
            mailboxes.append(Mailbox(account=LOCAL_ACCOUNT, name=name, is_local=True))
            # the local container is sometimes reported twice
            mailboxes.append(Mailbox(account=LOCAL_ACCOUNT, name=name, is_local=True))
        return list(self.accounts), mailboxes

    async def find_account(self, name: str) -> Optional[Account]:
        self.calls.append(("find_account", name))
        return next((a for a in self.accounts if a.name == name), None)

    async def find_mailbox(self, account: str, name: str) -> Optional[Mailbox]:
        self.calls.append(("find_mailbox", account, name))
        if (account, name) in self.store:
            return Mailbox(account=account, name=name)
        return None

    async def find_message(self, mailbox: Mailbox, message_id: str, with_content: bool = False):
        self.calls.append(("find_message", mailbox.key, message_id))
        if message_id in self.unavailable_ids:
            raise BridgeUnavailable("Cannot access Mail app while trying to look up message: Connection is invalid.")
        if mailbox.key in self.fail_lookup:
            raise OperationFailed(f"Failed to look up message in {mailbox.path}: timeout")
        if self.lose_in_trash and mailbox.name == "Trash":
            return None
        for message in self.store.get(mailbox.key, []):
            if message.message_id == message_id:
                found = message.model_copy(update={"account": mailbox.account, "mailbox": mailbox.name})
                if not with_content:
                    found.content = None
                return found
        return None

    async def fetch_messages(self, mailbox: Mailbox, cap: int) -> List[Message]:
        self.calls.append(("fetch_messages", mailbox.key, cap))
        if mailbox.key in self.unavailable_fetch:
            raise BridgeUnavailable("Cannot access Mail app while trying to list messages: Connection is invalid.")
        if mailbox.key in self.fail_fetch:
            raise OperationFailed(f"Failed to list messages in {mailbox.path}: mailbox vanished")
        return [m.model_copy(update={"content": None}) for m in self.store.get(mailbox.key, [])[:cap]]

    def _take(self, message: Message, action: str) -> Message:
        messages = self.store.get((message.account, message.mailbox), [])
        for index, candidate in enumerate(messages):
            if candidate.message_id == message.message_id:
                return messages.pop(index)
        raise OperationFailed(f"Failed to {action}: Message {message.message_id} not found during {action}")

    async def move_message(self, message: Message, target: Mailbox) -> None:
        self.calls.append(("move_message", message.message_id, (message.account, message.mailbox), target.key))
        if message.message_id in self.unavailable_move_ids:
            raise BridgeUnavailable("Cannot access Mail app while trying to move message: Connection is invalid.")
        if message.message_id in self.fail_move_ids:
            raise OperationFailed(f"Failed to move message {message.message_id}: permission denied")
        taken = self._take(message, "move")
        self.store.setdefault(target.key, []).append(taken)

    async def duplicate_message(self, message: Message, target: Mailbox) -> None:
        self.calls.append(("duplicate_message", message.message_id, target.key))
        source = next(
            m for m in self.store.get((message.account, message.mailbox), []) if m.message_id == message.message_id
        )
        self.store.setdefault(target.key, []).append(source.model_copy())

    async def archive_message(self, message: Message) -> None:
        self.calls.append(("archive_message", message.message_id))
        if not self.archive_supported:
            raise OperationFailed("Failed to archive message: Message doesn't understand the archive verb")
        taken = self._take(message, "archive")
        self.store.setdefault((message.account, "Archive"), []).append(taken)

    def _new_draft(self, attachment_path: Optional[str], **fields) -> DraftHandle:
        draft_id = str(100 + len(self.drafts))
        draft = dict(fields, attachments=[])
        self.drafts[draft_id] = draft
        attachment_error = None
        if attachment_path:
            if self.fail_attach:
                attachment_error = f"file not found: {attachment_path}"
            else:
                draft["attachments"].append(attachment_path)
        return DraftHandle(
            draft_id=draft_id if self.report_draft_id else None,
            content_merged=fields.get("merged", True),
            attachment_error=attachment_error,
        )

    async def create_outgoing(
        self,
        subject: str,
        body: str,
        to_address: Optional[str],
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        self.calls.append(("create_outgoing", subject, to_address))
        return self._new_draft(attachment_path, subject=subject, content=body, to=to_address)

    async def create_reply(
        self,
        message: Message,
        prefix: str,
        settle_seconds: float,
        read_attempts: int,
        read_delay: float,
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        self.calls.append(("create_reply", message.message_id))
        if message.message_id in self.fail_reply_ids:
            raise OperationFailed(f"Failed to reply to message {message.message_id}: window did not open")
        quoted = ""
        for _ in range(max(1, read_attempts)):
            self.calls.append(("read_reply_content", message.message_id))
            quoted = self.reply_contents.pop(0) if self.reply_contents else ""
            if quoted.strip():
                break
        return self._new_draft(
            attachment_path,
            subject=f"Re: {message.subject}",
            content=prefix + quoted,
            reply_to=message.message_id,
            merged=bool(quoted.strip()),
        )


@pytest.fixture
def fake_bridge() -> FakeBridge:
    """
    Two accounts plus a disabled one and a local folder:

    iCloud: INBOX, Archive, Trash, Receipts
    Work:   Inbox, Projects, Trash, Archive
    Old:    Inbox (disabled)
    On My Mac: Receipts
    """
    bridge = FakeBridge()
    bridge.add_account("iCloud", ["INBOX", "Archive", "Trash", "Receipts"])
    bridge.add_account("Work", ["Inbox", "Projects", "Trash", "Archive"])
    bridge.add_account("Old", ["Inbox"], enabled=False)
    bridge.add_local("Receipts")

    bridge.put(
        "iCloud",
        "INBOX",
        make_message("81506", "Flight itinerary", "airline@example.com", hours_ago=1),
        make_message("81507", "Weekly newsletter", "news@python.org", hours_ago=5, is_read=True),
        make_message("81508", "Dinner on Friday?", "friend@example.com", hours_ago=None),
    )
    bridge.put(
        "Work",
        "Inbox",
        make_message("w1", "Quarterly report draft", "boss@work.example", hours_ago=2, is_flagged=True),
        make_message(
            "w2",
            "Invoice 2026-02",
            "billing@vendor.example",
            hours_ago=30,
            is_read=True,
            content='<p>Pay <a href="https://vendor.example/pay">here</a>. Terms: https://vendor.example/terms.</p>',
        ),
    )
    bridge.put("Work", "Projects", make_message("p1", "Launch plan", "pm@work.example", hours_ago=3))
    bridge.put("iCloud", "Receipts", make_message("r1", "Your receipt", "store@example.com", hours_ago=48))
    bridge.put(LOCAL_ACCOUNT, "Receipts", make_message("r2", "Old receipt", "shop@example.com", hours_ago=400))
    bridge.put("Old", "Inbox", make_message("o1", "Ancient mail", "old@example.com", hours_ago=1))
    return bridge


@pytest.fixture
def settings() -> Settings:
    return Settings(init_timeout=0.2, script_backoff=0.0)


@pytest.fixture
def runtime(fake_bridge, settings) -> MailRuntime:
    runtime = MailRuntime(bridge=fake_bridge, settings=settings)
    runtime.drafts.settle_seconds = 0
    runtime.drafts.read_delay = 0
    return runtime
