"""
Apple Mail scripting bridge.

``ScriptRunner`` executes JXA through ``osascript`` and returns tagged
results. ``MailBridge`` is the capability interface the orchestration layer
depends on; ``JXAMailBridge`` implements it on top of the runner.
"""

import abc
import asyncio
import logging
import subprocess
from typing import Any, List, Optional, Tuple

from apple_mail_agent import scripts
from apple_mail_agent.config import Settings
from apple_mail_agent.errors import (
    BridgeUnavailable,
    OperationFailed,
    ParseFailed,
)
from apple_mail_agent.models import LOCAL_ACCOUNT, Account, DraftHandle, Mailbox, Message
from apple_mail_agent.retry import retry_until
from apple_mail_agent.scripts import BridgeError, BridgeResult, Ok, ParseError

logger = logging.getLogger(__name__)


class ScriptRunner:
    """Execute JXA scripts with bounded concurrency and timeout retries.

    Apple Mail copes poorly with many simultaneous Apple Events, so the
    number of live osascript processes is capped by a semaphore. A width
    of 1 serializes every call.

    Retry behavior:
    - Up to ``settings.script_retries`` attempts, exponential backoff
    - Only timeouts are retried
    - Script errors are returned as BridgeError immediately
    - Exhausted timeouts raise OperationFailed for this call; a missing
      osascript raises BridgeUnavailable
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._semaphore = asyncio.Semaphore(self.settings.bridge_concurrency)

    async def execute(self, function_source: str, *args: Any) -> BridgeResult:
        script = scripts.build_script(function_source)
        argv = scripts.encode_args(*args)

        async def attempt() -> subprocess.CompletedProcess:
            return await asyncio.to_thread(
                subprocess.run,
                ["osascript", "-l", "JavaScript", "-e", script, argv],
                capture_output=True,
                text=True,
                timeout=self.settings.script_timeout,
            )

        async with self._semaphore:
            try:
                outcome = await retry_until(
                    attempt,
                    accept=lambda _: True,
                    attempts=self.settings.script_retries,
                    delay=self.settings.script_backoff,
                    backoff=2.0,
                    retry_on=(subprocess.TimeoutExpired,),
                    label="osascript",
                )
            except FileNotFoundError:
                raise BridgeUnavailable(
                    "osascript not found. This tool requires macOS with AppleScript support."
                )

        if not outcome.accepted:
            # fails this call only; ensure_available decides whether Mail is reachable
            raise OperationFailed(
                f"Mail script timed out after {outcome.attempts} attempts. "
                "Apple Mail may be busy."
            )

        completed = outcome.value
        if completed.returncode != 0:
            return scripts.error_from_stderr(completed.stderr, completed.returncode)
        return scripts.interpret_response(completed.stdout)


def unwrap(result: BridgeResult, action: str) -> Any:
    """Return an Ok payload or raise the matching error."""
    if isinstance(result, Ok):
        return result.value
    if isinstance(result, BridgeError):
        if result.unavailable:
            raise BridgeUnavailable(f"Cannot access Mail app while trying to {action}: {result.reason}")
        raise OperationFailed(f"Failed to {action}: {result.reason}")
    if isinstance(result, ParseError):
        raise ParseFailed(result.raw, f"Unexpected response from Mail while trying to {action}")
    raise ParseFailed(repr(result))


def _where(account: Optional[str], mailbox: Optional[str]) -> list:
    return [account, mailbox, account == LOCAL_ACCOUNT]


class MailBridge(abc.ABC):
    """Everything the orchestration layer may ask of Apple Mail."""

    @abc.abstractmethod
    async def ensure_available(self) -> None:
        """Make sure Mail is running, launching it once if needed."""

    @abc.abstractmethod
    async def read_directory(self) -> Tuple[List[Account], List[Mailbox]]:
        """Accounts in listing order, and the mailboxes of enabled accounts plus local ones."""

    @abc.abstractmethod
    async def find_account(self, name: str) -> Optional[Account]: ...

    @abc.abstractmethod
    async def find_mailbox(self, account: str, name: str) -> Optional[Mailbox]: ...

    @abc.abstractmethod
    async def find_message(
        self, mailbox: Mailbox, message_id: str, with_content: bool = False
    ) -> Optional[Message]: ...

    @abc.abstractmethod
    async def fetch_messages(self, mailbox: Mailbox, cap: int) -> List[Message]: ...

    @abc.abstractmethod
    async def move_message(self, message: Message, target: Mailbox) -> None: ...

    @abc.abstractmethod
    async def duplicate_message(self, message: Message, target: Mailbox) -> None: ...

    @abc.abstractmethod
    async def archive_message(self, message: Message) -> None: ...

    @abc.abstractmethod
    async def create_outgoing(
        self,
        subject: str,
        body: str,
        to_address: Optional[str],
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        """Open a new outgoing message, attaching a file if given."""

    @abc.abstractmethod
    async def create_reply(
        self,
        message: Message,
        prefix: str,
        settle_seconds: float,
        read_attempts: int,
        read_delay: float,
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        """
        Open a reply and put ``prefix`` above the quoted original.

        Mail fills the quoted text in after the window opens, so the
        content is read back up to ``read_attempts`` times, ``read_delay``
        seconds apart, after an initial ``settle_seconds`` wait. Opening,
        read-back, merge and attachment act on one draft reference; the
        draft id is only reported back.
        """


class JXAMailBridge(MailBridge):
    def __init__(self, runner: Optional[ScriptRunner] = None, settings: Optional[Settings] = None):
        self.runner = runner or ScriptRunner(settings)

    async def _call(self, action: str, source: str, *args: Any) -> Any:
        return unwrap(await self.runner.execute(source, *args), action)

    async def ensure_available(self) -> None:
        try:
            status = await self._call("check Mail status", scripts.IS_RUNNING)
        except OperationFailed as e:
            raise BridgeUnavailable(f"Mail did not answer a status check: {e}")
        if status and status.get("running"):
            return

        logger.warning("Mail app is not running, attempting to launch...")
        try:
            status = await self._call("launch Mail", scripts.LAUNCH)
        except OperationFailed as e:
            raise BridgeUnavailable(f"Could not activate Mail app. Please start it manually. {e}")
        if not status or not status.get("running"):
            raise BridgeUnavailable("Could not activate Mail app. Please start it manually.")
        logger.info("Mail app launched")

    async def read_directory(self) -> Tuple[List[Account], List[Mailbox]]:
        payload = await self._call("list mailboxes", scripts.READ_DIRECTORY, LOCAL_ACCOUNT)
        if not isinstance(payload, dict):
            raise ParseFailed(repr(payload), "Mailbox listing did not return a record")
        accounts = [Account(**entry) for entry in payload.get("accounts", [])]
        mailboxes = [Mailbox(**entry) for entry in payload.get("mailboxes", [])]
        return accounts, mailboxes

    async def find_account(self, name: str) -> Optional[Account]:
        record = await self._call(f"find account {name!r}", scripts.FIND_ACCOUNT, name)
        return Account(**record) if record else None

    async def find_mailbox(self, account: str, name: str) -> Optional[Mailbox]:
        record = await self._call(
            f"find mailbox {account}/{name}", scripts.FIND_MAILBOX, *_where(account, name)
        )
        return Mailbox(**record) if record else None

    async def find_message(
        self, mailbox: Mailbox, message_id: str, with_content: bool = False
    ) -> Optional[Message]:
        record = await self._call(
            f"look up message {message_id} in {mailbox.path}",
            scripts.FIND_MESSAGE,
            *_where(mailbox.account, mailbox.name),
            message_id,
            with_content,
        )
        return Message(**record) if record else None

    async def fetch_messages(self, mailbox: Mailbox, cap: int) -> List[Message]:
        records = await self._call(
            f"list messages in {mailbox.path}",
            scripts.FETCH_MESSAGES,
            *_where(mailbox.account, mailbox.name),
            cap,
        )
        if records is None:
            return []
        if not isinstance(records, list):
            raise ParseFailed(repr(records), f"Message listing for {mailbox.path} was not a list")
        return [Message(**record) for record in records]

    async def move_message(self, message: Message, target: Mailbox) -> None:
        await self._call(
            f"move message {message.message_id}",
            scripts.MOVE_MESSAGE,
            *_where(message.account, message.mailbox),
            message.message_id,
            *_where(target.account, target.name),
        )

    async def duplicate_message(self, message: Message, target: Mailbox) -> None:
        await self._call(
            f"copy message {message.message_id}",
            scripts.DUPLICATE_MESSAGE,
            *_where(message.account, message.mailbox),
            message.message_id,
            *_where(target.account, target.name),
        )

    async def archive_message(self, message: Message) -> None:
        await self._call(
            f"archive message {message.message_id}",
            scripts.ARCHIVE_MESSAGE,
            *_where(message.account, message.mailbox),
            message.message_id,
        )

    async def create_outgoing(
        self,
        subject: str,
        body: str,
        to_address: Optional[str],
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        record = await self._call(
            "create draft", scripts.CREATE_OUTGOING, subject, body, to_address, attachment_path
        )
        return DraftHandle(**(record or {}))

    async def create_reply(
        self,
        message: Message,
        prefix: str,
        settle_seconds: float,
        read_attempts: int,
        read_delay: float,
        attachment_path: Optional[str] = None,
    ) -> DraftHandle:
        record = await self._call(
            f"reply to message {message.message_id}",
            scripts.CREATE_REPLY,
            *_where(message.account, message.mailbox),
            message.message_id,
            prefix,
            settle_seconds,
            read_attempts,
            read_delay,
            attachment_path,
        )
        return DraftHandle(**(record or {}))
