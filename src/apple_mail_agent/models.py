"""Records exchanged between the bridge, the engine and the tool surface."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT = "On My Mac"
NO_SUBJECT = "[No Subject]"
UNKNOWN_SENDER = "[Unknown Sender]"


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date as reported by Mail.

    Accepts ISO 8601 text (what JXA's toISOString() yields), AppleScript's
    long date text ("Monday, 14 February 2026 at 10:00:00") or a datetime.
    Naive values are taken as local time. Returns None when the value is
    missing or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace(" at ", " ")
        try:
            parsed = date_parser.parse(text)
        except (ValueError, OverflowError):
            logger.debug(f"Unparseable date from Mail: {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


class Account(BaseModel):
    name: str
    enabled: bool = True


class Mailbox(BaseModel):
    """A folder, identified by its (account, name) pair."""

    model_config = ConfigDict(frozen=True)

    account: str
    name: str
    is_local: bool = False
    total_count: Optional[int] = Field(
        default=None, description="Message count, inbox-like mailboxes only (-1 if unavailable)"
    )
    unread_count: Optional[int] = Field(
        default=None, description="Unread count, inbox-like mailboxes only (-1 if unavailable)"
    )

    @property
    def key(self) -> tuple:
        return (self.account, self.name)

    @property
    def path(self) -> str:
        return f"{self.account}/{self.name}"

    def is_named(self, name: str) -> bool:
        return self.name.lower() == name.lower()


class Link(BaseModel):
    text: str
    href: str


class Message(BaseModel):
    message_id: str
    subject: str = NO_SUBJECT
    sender: str = UNKNOWN_SENDER
    date_received: Optional[datetime] = None
    is_read: Optional[bool] = None
    is_flagged: Optional[bool] = None
    account: Optional[str] = None
    mailbox: Optional[str] = None
    content: Optional[str] = None
    links: List[Link] = Field(default_factory=list)

    @field_validator("message_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("subject", mode="before")
    @classmethod
    def _default_subject(cls, value: Any) -> str:
        return value or NO_SUBJECT

    @field_validator("sender", mode="before")
    @classmethod
    def _default_sender(cls, value: Any) -> str:
        return value or UNKNOWN_SENDER

    @field_validator("date_received", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[datetime]:
        return parse_date(value)

    @property
    def location(self) -> str:
        return f"{self.account} - {self.mailbox}"


class MoveRequest(BaseModel):
    """Move or copy one message to an explicit account/mailbox."""

    message_id: str = Field(description="ID of the email to move or copy")
    target_mailbox_name: str = Field(description="Destination mailbox name")
    target_account_name: str = Field(description="Account that owns the destination mailbox")


class MessageRequest(BaseModel):
    """Address one message, optionally hinting where it lives."""

    message_id: str = Field(description="ID of the email")
    account_name: Optional[str] = Field(default=None, description="Account hint (optional)")
    mailbox_name: Optional[str] = Field(default=None, description="Mailbox hint (optional)")


class ItemResult(BaseModel):
    """Outcome of one item in a move/copy/archive/trash batch."""

    message_id: str
    success: bool
    sender: Optional[str] = None
    subject: Optional[str] = None
    date_received: Optional[datetime] = None
    source_account: Optional[str] = None
    source_mailbox: Optional[str] = None
    target_account: Optional[str] = None
    target_mailbox: Optional[str] = None
    error: Optional[str] = None


class ReadResult(BaseModel):
    """Outcome of one item in a readEmails batch."""

    message_id: str
    success: bool
    message: Optional[Message] = None
    error: Optional[str] = None


class BatchOutcome(BaseModel):
    operation: str
    success: bool
    message: str
    results: List[ItemResult]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.results if item.success)


class DraftState(str, Enum):
    REQUESTED = "requested"
    LOCATED = "located"
    OPENED = "opened"
    CONTENT_MERGED = "content_merged"
    ATTACHMENT_ADDED = "attachment_added"
    SAVED = "saved"
    FAILED = "failed"


class DraftHandle(BaseModel):
    """What Mail reports after opening and filling a draft window."""

    draft_id: Optional[str] = None
    content_merged: bool = True
    attachment_error: Optional[str] = None

    @field_validator("draft_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Optional[str]:
        return None if value in (None, "") else str(value)


class DraftResult(BaseModel):
    success: bool
    message: str
    draft_id: Optional[str] = None
    state: DraftState = DraftState.REQUESTED
