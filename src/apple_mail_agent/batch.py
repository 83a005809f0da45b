"""
Move, copy, archive, trash and read over batches of messages.

Items are independent: each is validated, located and mutated on its own
and a failure only marks that item. Losing Mail altogether
(BridgeUnavailable) fails the whole call instead. Results line up
positionally with the requests.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.content import extract_links
from apple_mail_agent.directory import DirectorySnapshot, MailboxDirectory
from apple_mail_agent.errors import (
    BridgeUnavailable,
    MailAgentError,
    OperationFailed,
    ValidationFailed,
)
from apple_mail_agent.fanout import gather_settled
from apple_mail_agent.locator import MessageLocator
from apple_mail_agent.models import (
    BatchOutcome,
    ItemResult,
    Mailbox,
    Message,
    MessageRequest,
    MoveRequest,
    ReadResult,
)

logger = logging.getLogger(__name__)

TRASH = "Trash"
ARCHIVE = "Archive"

VERBS = {
    "move": "Moved",
    "copy": "Copied",
    "archive": "Archived",
    "trash": "Moved to trash",
}

Request = Union[MoveRequest, MessageRequest]
Step = Callable[[Request, DirectorySnapshot, ItemResult], Awaitable[None]]


def _capture(item: ItemResult, message: Message) -> None:
    item.sender = message.sender
    item.subject = message.subject
    item.date_received = message.date_received
    item.source_account = message.account
    item.source_mailbox = message.mailbox


def _target(item: ItemResult, mailbox: Mailbox) -> None:
    item.target_account = mailbox.account
    item.target_mailbox = mailbox.name


def summarize(operation: str, results: List[ItemResult]) -> BatchOutcome:
    succeeded = sum(1 for item in results if item.success)
    return BatchOutcome(
        operation=operation,
        success=succeeded > 0,
        message=f"{VERBS[operation]} {succeeded} of {len(results)} message(s).",
        results=results,
    )


class BatchOperationCoordinator:
    def __init__(self, bridge: MailBridge, directory: MailboxDirectory, locator: MessageLocator):
        self.bridge = bridge
        self.directory = directory
        self.locator = locator

    async def move(self, requests: Sequence[MoveRequest]) -> BatchOutcome:
        """Move each message to its target account/mailbox."""
        return await self._run("move", requests, self._move_one)

    async def copy(self, requests: Sequence[MoveRequest]) -> BatchOutcome:
        """Duplicate each message into its target account/mailbox."""
        return await self._run("copy", requests, self._copy_one)

    async def archive(self, requests: Sequence[MessageRequest]) -> BatchOutcome:
        """Archive each message within its own account."""
        return await self._run("archive", requests, self._archive_one)

    async def trash(self, requests: Sequence[MessageRequest]) -> BatchOutcome:
        """Move each message to its own account's Trash."""
        return await self._run("trash", requests, self._trash_one)

    async def read_emails(self, requests: Sequence[MessageRequest]) -> List[ReadResult]:
        """
        Read full content of each message.

        Duplicate ids are looked up once; the returned list still has one
        entry per request, in request order.
        """
        if not requests:
            raise ValidationFailed("At least one read request is required.")
        snapshot = await self.directory.snapshot()

        unique: Dict[str, MessageRequest] = {}
        for request in requests:
            unique.setdefault(request.message_id, request)

        outcomes = await gather_settled(self._read_one(request, snapshot) for request in unique.values())
        by_id = dict(zip(unique, outcomes))
        return [by_id[request.message_id].model_copy(deep=True) for request in requests]

    async def _run(self, operation: str, requests: Sequence[Request], step: Step) -> BatchOutcome:
        if not requests:
            raise ValidationFailed(f"At least one {operation} request is required.")
        snapshot = await self.directory.snapshot()
        results = await gather_settled(
            self._process(operation, request, snapshot, step) for request in requests
        )
        outcome = summarize(operation, results)
        logger.info(f"{operation}: {outcome.message}")
        return outcome

    async def _process(
        self, operation: str, request: Request, snapshot: DirectorySnapshot, step: Step
    ) -> ItemResult:
        item = ItemResult(message_id=request.message_id, success=False)
        try:
            await step(request, snapshot, item)
            item.success = True
        except BridgeUnavailable as e:
            logger.error(f"{operation} {request.message_id}: {e}")
            raise
        except MailAgentError as e:
            logger.info(f"{operation} {request.message_id} failed: {e}")
            item.error = str(e)
        return item

    def _validated_target(self, request: MoveRequest, snapshot: DirectorySnapshot) -> Mailbox:
        target = snapshot.find(request.target_account_name, request.target_mailbox_name)
        if target is None:
            raise ValidationFailed(
                snapshot.describe_missing(request.target_account_name, request.target_mailbox_name)
            )
        return target

    def _special_mailbox(self, snapshot: DirectorySnapshot, account: str, name: str) -> Mailbox:
        mailbox = snapshot.find(account, name, case_insensitive=True)
        if mailbox is None:
            raise ValidationFailed(snapshot.describe_missing(account, name))
        return mailbox

    async def _locate(self, request: Request, snapshot: DirectorySnapshot, **kwargs) -> Message:
        return await self.locator.locate(
            request.message_id,
            account_hint=getattr(request, "account_name", None),
            mailbox_hint=getattr(request, "mailbox_name", None),
            snapshot=snapshot,
            **kwargs,
        )

    async def _move_one(self, request: MoveRequest, snapshot: DirectorySnapshot, item: ItemResult) -> None:
        target = self._validated_target(request, snapshot)
        _target(item, target)
        message = await self._locate(request, snapshot)
        _capture(item, message)
        await self.bridge.move_message(message, target)

    async def _copy_one(self, request: MoveRequest, snapshot: DirectorySnapshot, item: ItemResult) -> None:
        target = self._validated_target(request, snapshot)
        _target(item, target)
        message = await self._locate(request, snapshot)
        _capture(item, message)
        await self.bridge.duplicate_message(message, target)

    async def _trash_one(self, request: MessageRequest, snapshot: DirectorySnapshot, item: ItemResult) -> None:
        message = await self._locate(request, snapshot)
        _capture(item, message)
        trash = self._special_mailbox(snapshot, message.account, TRASH)
        _target(item, trash)
        await self.bridge.move_message(message, trash)

    async def _archive_one(self, request: MessageRequest, snapshot: DirectorySnapshot, item: ItemResult) -> None:
        message = await self._locate(request, snapshot)
        _capture(item, message)

        try:
            await self.bridge.archive_message(message)
            archive = snapshot.find(message.account, ARCHIVE, case_insensitive=True)
            item.target_account = message.account
            item.target_mailbox = archive.name if archive else ARCHIVE
            return
        except OperationFailed as e:
            logger.info(f"Native archive failed for {message.message_id}, moving via Trash: {e}")

        trash = self._special_mailbox(snapshot, message.account, TRASH)
        archive = self._special_mailbox(snapshot, message.account, ARCHIVE)
        _target(item, archive)

        await self.bridge.move_message(message, trash)
        in_trash = await self._find_in(trash, message.message_id)
        if in_trash is None:
            raise OperationFailed(
                f"Message {message.message_id} was moved to {trash.path} but could not be found "
                "there afterwards; it was not archived"
            )
        await self.bridge.move_message(in_trash, archive)

    async def _find_in(self, mailbox: Mailbox, message_id: str) -> Optional[Message]:
        try:
            found = await self.bridge.find_message(mailbox, message_id)
        except BridgeUnavailable:
            raise
        except MailAgentError as e:
            logger.warning(f"Lookup of {message_id} in {mailbox.path} failed: {e}")
            return None
        if found is None:
            return None
        return found.model_copy(update={"account": mailbox.account, "mailbox": mailbox.name})

    async def _read_one(self, request: MessageRequest, snapshot: DirectorySnapshot) -> ReadResult:
        try:
            message = await self._locate(request, snapshot, with_content=True)
        except BridgeUnavailable:
            raise
        except MailAgentError as e:
            return ReadResult(message_id=request.message_id, success=False, error=str(e))
        message.links = extract_links(message.content or "")
        return ReadResult(message_id=request.message_id, success=True, message=message)
