"""Process-level wiring and the startup state machine."""

import asyncio
import logging
from enum import Enum
from typing import Optional

from apple_mail_agent.batch import BatchOperationCoordinator
from apple_mail_agent.bridge import JXAMailBridge, MailBridge
from apple_mail_agent.config import Settings
from apple_mail_agent.directory import MailboxDirectory
from apple_mail_agent.drafts import DraftComposer
from apple_mail_agent.errors import MailAgentError
from apple_mail_agent.locator import MessageLocator
from apple_mail_agent.query import EmailQueryEngine

logger = logging.getLogger(__name__)


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    DEGRADED_READY = "degraded_ready"


class MailRuntime:
    """
    The services a tool handler may use, plus how far startup got.

    ``start()`` runs the first connectivity check under
    ``settings.init_timeout``. If Mail answers in time the runtime is READY;
    otherwise it is DEGRADED_READY and availability is re-checked on demand
    by ``ensure_ready()`` before each request.
    """

    def __init__(self, bridge: Optional[MailBridge] = None, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.bridge = bridge or JXAMailBridge(settings=self.settings)
        self.directory = MailboxDirectory(self.bridge)
        self.locator = MessageLocator(self.bridge, self.directory)
        self.query = EmailQueryEngine(self.bridge, self.directory, self.settings)
        self.batch = BatchOperationCoordinator(self.bridge, self.directory, self.locator)
        self.drafts = DraftComposer(self.bridge, self.locator)
        self.state = InitState.UNINITIALIZED
        self.degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.state == InitState.DEGRADED_READY

    async def start(self) -> InitState:
        if self.state != InitState.UNINITIALIZED:
            return self.state

        self.state = InitState.LOADING
        logger.info("Checking Mail availability...")
        try:
            await asyncio.wait_for(self.bridge.ensure_available(), timeout=self.settings.init_timeout)
        except asyncio.TimeoutError:
            self._degrade(f"Mail did not respond within {self.settings.init_timeout}s")
        except MailAgentError as e:
            self._degrade(str(e))
        else:
            self.state = InitState.READY
            logger.info("Mail is available, running in standard mode")
        return self.state

    async def ensure_ready(self) -> None:
        """Called per request; promotes a degraded runtime once Mail answers."""
        if self.state == InitState.UNINITIALIZED:
            await self.start()
        if self.state != InitState.DEGRADED_READY:
            return
        logger.info("Checking Mail availability on demand (degraded mode)...")
        await self.bridge.ensure_available()
        self.state = InitState.READY
        self.degraded_reason = None
        logger.info("Mail became available, leaving degraded mode")

    def _degrade(self, reason: str) -> None:
        self.state = InitState.DEGRADED_READY
        self.degraded_reason = reason
        logger.warning(f"{reason}. Continuing in degraded mode; Mail will be checked on demand.")
