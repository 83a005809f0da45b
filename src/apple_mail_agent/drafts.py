"""Composing new drafts and replies."""

import html
import logging
from typing import Optional

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.errors import (
    BridgeUnavailable,
    MailAgentError,
    NotFound,
    ValidationFailed,
)
from apple_mail_agent.locator import MessageLocator
from apple_mail_agent.models import DraftHandle, DraftResult, DraftState

logger = logging.getLogger(__name__)

# Mail fills a reply's quoted text asynchronously after the window opens
REPLY_SETTLE_SECONDS = 0.7
REPLY_READ_ATTEMPTS = 3
REPLY_READ_DELAY = 0.5


def reply_prefix(body: str) -> str:
    """The new text, as HTML, ready to sit above a reply's quoted content."""
    escaped = html.escape(body, quote=False).replace("\n", "<br>")
    return f"{escaped}<br><br>"


class DraftComposer:
    """
    Create a draft, either new or a reply to an existing message.

    Lifecycle: REQUESTED, then LOCATED and OPENED and CONTENT_MERGED for a
    reply or OPENED for a new message, then ATTACHMENT_ADDED when a file was
    given, then SAVED. Any step can end in FAILED, whose message carries the
    step's reason.
    """

    def __init__(
        self,
        bridge: MailBridge,
        locator: MessageLocator,
        settle_seconds: float = REPLY_SETTLE_SECONDS,
        read_attempts: int = REPLY_READ_ATTEMPTS,
        read_delay: float = REPLY_READ_DELAY,
    ):
        self.bridge = bridge
        self.locator = locator
        self.settle_seconds = settle_seconds
        self.read_attempts = read_attempts
        self.read_delay = read_delay

    @staticmethod
    def validate(
        is_reply: bool,
        original_message_id: Optional[str],
        subject: Optional[str],
        body: Optional[str],
    ) -> None:
        """Reject incomplete draft requests without touching Mail."""
        if not subject or body is None:
            raise ValidationFailed("subject and body are required for createDraft.")
        if is_reply and not original_message_id:
            raise ValidationFailed("originalMessageId is required when isReply is true.")

    async def create_draft(
        self,
        is_reply: bool,
        original_message_id: Optional[str],
        to_address: Optional[str],
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> DraftResult:
        """
        Raises:
            ValidationFailed: missing subject/body, or a reply without an original id.
                Raised before Mail is contacted.
            BridgeUnavailable: Mail could not be reached
        """
        self.validate(is_reply, original_message_id, subject, body)
        await self.bridge.ensure_available()

        state = DraftState.REQUESTED
        try:
            if is_reply:
                original = await self.locator.locate(original_message_id)
                state = DraftState.LOCATED
                handle = await self.bridge.create_reply(
                    original,
                    reply_prefix(body),
                    self.settle_seconds,
                    self.read_attempts,
                    self.read_delay,
                    attachment_path,
                )
                state = DraftState.CONTENT_MERGED
                if not handle.content_merged:
                    logger.warning(
                        "Replying with empty original message content. "
                        "Mail may not have populated the reply yet."
                    )
            else:
                handle = await self.bridge.create_outgoing(subject, body, to_address, attachment_path)
                state = DraftState.OPENED
        except BridgeUnavailable:
            raise
        except NotFound as e:
            return self._failed(str(e), None)
        except MailAgentError as e:
            return self._failed(f"Error creating draft email after {state.value}: {e}", None)

        return self._finish(handle, state, attachment_path)

    def _finish(self, handle: DraftHandle, state: DraftState, attachment_path: Optional[str]) -> DraftResult:
        if attachment_path:
            if handle.attachment_error:
                return self._failed(f"Attachment error: {handle.attachment_error}", handle.draft_id)
            state = DraftState.ATTACHMENT_ADDED
            logger.debug(f"Attached {attachment_path} to draft {handle.draft_id or '(no id)'}")

        logger.info(f"Draft {handle.draft_id or '(no id)'} saved after {state.value}")
        return DraftResult(
            success=True,
            message="Draft created successfully.",
            draft_id=handle.draft_id,
            state=DraftState.SAVED,
        )

    @staticmethod
    def _failed(message: str, draft_id: Optional[str]) -> DraftResult:
        logger.warning(message)
        return DraftResult(success=False, message=message, draft_id=draft_id, state=DraftState.FAILED)
