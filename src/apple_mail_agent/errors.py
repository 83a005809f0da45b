"""Error taxonomy for mail operations."""

from typing import Iterable, Optional


class MailAgentError(Exception):
    """Base exception for all mail agent errors."""


class BridgeUnavailable(MailAgentError):
    """Apple Mail could not be reached or launched."""


class NotFound(MailAgentError):
    """An account, mailbox or message does not exist."""


class MessageNotFound(NotFound):
    """No mailbox holds a message with the requested id."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Could not find email with ID: {message_id}")


class NoInboxFound(NotFound):
    """An account has no mailbox named Inbox."""

    def __init__(self, account: str, available: Optional[Iterable[str]] = None):
        self.account = account
        self.available = list(available or [])
        super().__init__(
            f"No inbox found in account '{account}'. "
            f"Available mailboxes: {', '.join(self.available) or 'none'}"
        )


class ValidationFailed(MailAgentError):
    """A request was rejected before any mutation was attempted."""


class OperationFailed(MailAgentError):
    """The bridge raised an error while performing a mutating call."""


class ParseFailed(MailAgentError):
    """The bridge returned text that does not match the expected shape."""

    def __init__(self, raw: str, message: Optional[str] = None):
        self.raw = raw
        super().__init__(message or f"Unexpected response from Mail: {raw[:200]!r}")
