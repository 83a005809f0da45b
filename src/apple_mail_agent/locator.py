"""Finding where a message currently lives."""

import logging
from typing import Optional

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.directory import DirectorySnapshot, MailboxDirectory
from apple_mail_agent.errors import BridgeUnavailable, MailAgentError, MessageNotFound
from apple_mail_agent.models import Mailbox, Message

logger = logging.getLogger(__name__)


class MessageLocator:
    """
    Locate a message by id.

    With both an account and a mailbox hint, that single mailbox is searched
    first. Otherwise, or on a miss, every mailbox is searched in directory
    order (accounts in listing order, their mailboxes in listing order, local
    folders last) and the first match wins. Message ids are assumed unique
    across mailboxes.
    """

    def __init__(self, bridge: MailBridge, directory: MailboxDirectory):
        self.bridge = bridge
        self.directory = directory

    async def locate(
        self,
        message_id: str,
        account_hint: Optional[str] = None,
        mailbox_hint: Optional[str] = None,
        with_content: bool = False,
        snapshot: Optional[DirectorySnapshot] = None,
    ) -> Message:
        """
        Return the message with its account and mailbox filled in.

        Raises:
            MessageNotFound: no mailbox holds the message
            BridgeUnavailable: Mail went away during the scan
        """
        hinted = None
        if account_hint and mailbox_hint:
            hinted = Mailbox(account=account_hint, name=mailbox_hint)
            found = await self._look_in(hinted, message_id, with_content)
            if found:
                return found
            logger.debug(f"Message {message_id} not in hinted mailbox {hinted.path}, scanning")

        if snapshot is None:
            snapshot = await self.directory.snapshot()

        for mailbox in snapshot:
            if hinted is not None and mailbox.key == hinted.key:
                continue
            found = await self._look_in(mailbox, message_id, with_content)
            if found:
                return found

        raise MessageNotFound(message_id)

    async def _look_in(self, mailbox: Mailbox, message_id: str, with_content: bool) -> Optional[Message]:
        try:
            message = await self.bridge.find_message(mailbox, message_id, with_content=with_content)
        except BridgeUnavailable:
            raise
        except MailAgentError as e:
            logger.debug(f"Lookup in {mailbox.path} for {message_id} failed: {e}")
            return None
        if message is None:
            return None
        return message.model_copy(update={"account": mailbox.account, "mailbox": mailbox.name})
