"""Resolution of the (account, mailbox) pairs visible in Mail."""

import logging
from typing import Dict, Iterable, List, Optional

from apple_mail_agent.bridge import MailBridge
from apple_mail_agent.models import Account, Mailbox

logger = logging.getLogger(__name__)


class DirectorySnapshot:
    """Mailboxes as reported by one directory resolution."""

    def __init__(self, accounts: Iterable[Account], mailboxes: Iterable[Mailbox]):
        self.accounts_seen = list(accounts)
        self.mailboxes = list(mailboxes)

    def __iter__(self):
        return iter(self.mailboxes)

    def __len__(self) -> int:
        return len(self.mailboxes)

    def accounts(self) -> List[str]:
        """Account names in listing order, local folders last."""
        names: Dict[str, None] = {}
        for account in self.accounts_seen:
            if account.enabled:
                names[account.name] = None
        for mailbox in self.mailboxes:
            names.setdefault(mailbox.account, None)
        return list(names)

    def mailboxes_for(self, account: str) -> List[Mailbox]:
        return [mailbox for mailbox in self.mailboxes if mailbox.account == account]

    def find(self, account: str, name: str, case_insensitive: bool = False) -> Optional[Mailbox]:
        for mailbox in self.mailboxes:
            if mailbox.account != account:
                continue
            if mailbox.name == name or (case_insensitive and mailbox.is_named(name)):
                return mailbox
        return None

    def named(self, name: str) -> List[Mailbox]:
        """Every mailbox across accounts whose name matches case-insensitively."""
        return [mailbox for mailbox in self.mailboxes if mailbox.is_named(name)]

    def describe_missing(self, account: str, name: str) -> str:
        if account in self.accounts():
            available = [mailbox.name for mailbox in self.mailboxes_for(account)]
            return (
                f'Mailbox "{name}" not found in account "{account}". '
                f"Available mailboxes: {', '.join(available) or 'none'}"
            )
        return f'Account "{account}" not found. Available accounts: {", ".join(self.accounts())}'


class MailboxDirectory:
    """
    Enumerates the mailboxes of every enabled account plus local
    ("On My Mac") folders.

    Nothing is cached: each call re-queries Mail. A call either returns the
    full set or raises; BridgeUnavailable when Mail cannot be reached after
    one launch attempt.
    """

    def __init__(self, bridge: MailBridge):
        self.bridge = bridge

    async def snapshot(self) -> DirectorySnapshot:
        await self.bridge.ensure_available()
        accounts, raw_mailboxes = await self.bridge.read_directory()

        enabled = {account.name for account in accounts if account.enabled}
        seen = set()
        mailboxes = []
        for mailbox in raw_mailboxes:
            if not mailbox.is_local and mailbox.account not in enabled:
                continue
            if mailbox.key in seen:
                continue
            seen.add(mailbox.key)
            mailboxes.append(mailbox)

        logger.debug(f"Directory resolved {len(mailboxes)} mailbox(es) across {len(enabled)} account(s)")
        return DirectorySnapshot(accounts, mailboxes)

    async def list_mailboxes(self) -> List[Mailbox]:
        return list(await self.snapshot())
