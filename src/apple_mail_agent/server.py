#!/usr/bin/env python3
"""
Apple Mail Agent - FastMCP server
Exposes tools to list, search, read, file and draft Apple Mail messages
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP

from apple_mail_agent.config import Settings
from apple_mail_agent.errors import MailAgentError, ValidationFailed
from apple_mail_agent.models import (
    BatchOutcome,
    DraftResult,
    Mailbox,
    Message,
    MessageRequest,
    MoveRequest,
    ReadResult,
)
from apple_mail_agent.runtime import MailRuntime

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[MailRuntime]:
    runtime = MailRuntime(settings=SETTINGS)
    await runtime.start()
    yield runtime


# Initialize FastMCP server
mcp = FastMCP("Apple Mail Agent", lifespan=lifespan)


# Decorator to inject user preferences into tool docstrings
def inject_preferences(func):
    """Decorator that appends user preferences to tool docstrings"""
    if SETTINGS.user_preferences:
        if func.__doc__:
            func.__doc__ = func.__doc__.rstrip() + f"\n\nUser Preferences: {SETTINGS.user_preferences}"
        else:
            func.__doc__ = f"User Preferences: {SETTINGS.user_preferences}"
    return func


def _date(message: Message) -> str:
    return message.date_received.isoformat() if message.date_received else "Unknown"


def format_email(message: Message, include_id: bool = True) -> str:
    lines = [f"ID: {message.message_id}"] if include_id else []
    lines += [
        f"From: {message.sender}",
        f"Subject: {message.subject}",
        f"Date: {_date(message)}",
        f"Mailbox: {message.location}",
        f"Read: {message.is_read}",
        f"Flagged: {message.is_flagged}",
    ]
    return "\n".join(lines)


def format_email_list(messages: List[Message], search_term: Optional[str] = None) -> str:
    if not messages:
        return f'No emails found for "{search_term}"' if search_term else "No emails found"
    matching = f' matching "{search_term}"' if search_term else ""
    body = "\n\n---\n\n".join(format_email(m) for m in messages)
    return f"Found {len(messages)} email(s){matching}:\n\n{body}"


def format_read_results(results: List[ReadResult]) -> str:
    blocks = []
    for result in results:
        if not result.success or result.message is None:
            blocks.append(f"✗ Could not read email with ID: {result.message_id}\n   Error: {result.error}")
            continue
        message = result.message
        block = f"Email Details (ID: {message.message_id}):\n{format_email(message, include_id=False)}"
        block += f"\n\nContent:\n{message.content or ''}"
        if message.links:
            block += "\n\nLinks:\n" + "\n".join(f"- {link.text}: {link.href}" for link in message.links)
        blocks.append(block)
    read = sum(1 for r in results if r.success)
    header = f"Read {read} of {len(results)} email(s)."
    return header + "\n\n" + "\n\n━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━\n\n".join(blocks)


def format_mailboxes(mailboxes: List[Mailbox]) -> str:
    if not mailboxes:
        return "No mailboxes found."
    lines = []
    for mailbox in mailboxes:
        line = mailbox.path
        if mailbox.total_count is not None:
            if mailbox.total_count < 0 or (mailbox.unread_count or 0) < 0:
                line += " (count unavailable)"
            else:
                line += f" ({mailbox.total_count} total, {mailbox.unread_count} unread)"
        lines.append(line)
    return f"Found {len(mailboxes)} mailbox(es):\n\n" + "\n".join(lines)


def format_batch(outcome: BatchOutcome) -> str:
    text = outcome.message + "\n\n"
    if outcome.results:
        text += "Details:\n"
    for index, item in enumerate(outcome.results, start=1):
        text += f"{index}. {'✓' if item.success else '✗'} {item.subject or item.message_id}\n"
        if item.sender:
            text += f"   From: {item.sender}\n"
        if item.date_received:
            text += f"   Date: {item.date_received.isoformat()}\n"
        if item.source_account:
            text += f"   From mailbox: {item.source_account} - {item.source_mailbox}\n"
        if item.target_account:
            text += f"   To mailbox: {item.target_account} - {item.target_mailbox}\n"
        if not item.success and item.error:
            text += f"   Error: {item.error}\n"
        text += "\n"
    return text.rstrip() + "\n"


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


async def respond(operation: str, work: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
    """Await a handler, turning mail errors into a failed response."""
    try:
        return await work
    except MailAgentError as e:
        logger.error(f"{operation} failed: {e}")
        return {"success": False, "message": f"Error with {operation}: {e}"}


def message_requests(
    requests: Optional[List[MessageRequest]],
    message_id: Optional[str],
    account_name: Optional[str] = None,
    mailbox_name: Optional[str] = None,
) -> List[MessageRequest]:
    """Normalize the batch and single-item forms into one list."""
    if requests:
        return list(requests)
    if message_id:
        return [MessageRequest(message_id=message_id, account_name=account_name, mailbox_name=mailbox_name)]
    raise ValidationFailed("Provide either 'requests' or 'message_id'.")


def move_requests(
    requests: Optional[List[MoveRequest]],
    message_id: Optional[str],
    target_mailbox_name: Optional[str],
    target_account_name: Optional[str],
) -> List[MoveRequest]:
    if requests:
        return list(requests)
    if message_id and target_mailbox_name and target_account_name:
        return [
            MoveRequest(
                message_id=message_id,
                target_mailbox_name=target_mailbox_name,
                target_account_name=target_account_name,
            )
        ]
    raise ValidationFailed(
        "Provide either 'requests' or 'message_id' with 'target_mailbox_name' and 'target_account_name'."
    )


async def handle_create_draft(runtime: MailRuntime, **kwargs) -> Dict[str, Any]:
    runtime.drafts.validate(
        kwargs.get("is_reply", False),
        kwargs.get("original_message_id"),
        kwargs.get("subject"),
        kwargs.get("body"),
    )
    await runtime.ensure_ready()
    result: DraftResult = await runtime.drafts.create_draft(**kwargs)
    return _dump(result)


async def handle_list_emails(
    runtime: MailRuntime,
    search_term: Optional[str] = None,
    limit: Optional[int] = None,
    account_name: Optional[str] = None,
    mailbox_name: Optional[str] = None,
    is_read: Optional[bool] = None,
    is_flagged: Optional[bool] = None,
) -> Dict[str, Any]:
    await runtime.ensure_ready()
    if limit is None:
        limit = runtime.settings.default_limit
    elif limit < 0:
        raise ValidationFailed("limit must be zero or greater.")
    messages = await runtime.query.list(
        search_term=search_term,
        limit=limit,
        account_name=account_name,
        mailbox_name=mailbox_name,
        is_read=is_read,
        is_flagged=is_flagged,
    )
    return {
        "success": True,
        "message": format_email_list(messages, search_term),
        "count": len(messages),
        "emails": [_dump(m) for m in messages],
    }


async def handle_read_emails(runtime: MailRuntime, requests: List[MessageRequest]) -> Dict[str, Any]:
    await runtime.ensure_ready()
    results = await runtime.batch.read_emails(requests)
    return {
        "success": any(r.success for r in results),
        "message": format_read_results(results),
        "results": [_dump(r) for r in results],
    }


async def handle_list_mailboxes(runtime: MailRuntime) -> Dict[str, Any]:
    await runtime.ensure_ready()
    mailboxes = await runtime.directory.list_mailboxes()
    return {
        "success": True,
        "message": format_mailboxes(mailboxes),
        "mailboxes": [_dump(m) for m in mailboxes],
    }


async def handle_batch(runtime: MailRuntime, operation: str, requests: list) -> Dict[str, Any]:
    await runtime.ensure_ready()
    outcome: BatchOutcome = await getattr(runtime.batch, operation)(requests)
    data = _dump(outcome)
    data["message"] = format_batch(outcome)
    return data


def _runtime(ctx: Context) -> MailRuntime:
    return ctx.request_context.lifespan_context


@mcp.tool(name="createDraft")
@inject_preferences
async def create_draft(
    ctx: Context,
    is_reply: bool,
    subject: str,
    body: str,
    original_message_id: Optional[str] = None,
    to_address: Optional[str] = None,
    attachment_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a draft email in Apple Mail, either a new message or a reply.

    The draft is left open in Mail and is never sent.

    Args:
        is_reply: True to reply to an existing email (requires original_message_id)
        subject: Subject line (kept by Mail's own "Re:" subject for replies)
        body: Body text. For replies it is placed above the quoted original.
        original_message_id: ID of the email being replied to
        to_address: Recipient address for a new message (optional)
        attachment_path: Absolute path of a file to attach (optional)

    Returns:
        success flag, message, and the draft id when Mail reports one
    """
    return await respond(
        "createDraft",
        handle_create_draft(
            _runtime(ctx),
            is_reply=is_reply,
            original_message_id=original_message_id,
            to_address=to_address,
            subject=subject,
            body=body,
            attachment_path=attachment_path,
        ),
    )


@mcp.tool(name="listEmails")
@inject_preferences
async def list_emails(
    ctx: Context,
    search_term: Optional[str] = None,
    limit: Optional[int] = None,
    account_name: Optional[str] = None,
    mailbox_name: Optional[str] = None,
    is_read: Optional[bool] = None,
    is_flagged: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    List emails newest first, optionally searching and filtering.

    Args:
        search_term: Text fuzzy-matched against subject and sender (optional)
        limit: Maximum number of emails to return (default: 25)
        account_name: Account to list from (e.g., "iCloud", "Work"). Without a mailbox, its Inbox is used.
        mailbox_name: Mailbox to list from. Without an account, that mailbox in every account.
        is_read: Only read (true) or unread (false) emails (optional)
        is_flagged: Only flagged (true) or unflagged (false) emails (optional)

    Returns:
        Formatted list of emails with ID, sender, subject, date, mailbox and status
    """
    return await respond(
        "listEmails",
        handle_list_emails(
            _runtime(ctx),
            search_term=search_term,
            limit=limit,
            account_name=account_name,
            mailbox_name=mailbox_name,
            is_read=is_read,
            is_flagged=is_flagged,
        ),
    )


@mcp.tool(name="readEmails")
@inject_preferences
async def read_emails(
    ctx: Context,
    requests: Optional[List[MessageRequest]] = None,
    message_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Read the full content of one or more emails.

    Args:
        requests: Emails to read, each with message_id and optional account_name/mailbox_name hints
        message_id: Shortcut for reading a single email

    Returns:
        One result per request, in order, with content and extracted links
    """
    async def work() -> Dict[str, Any]:
        return await handle_read_emails(_runtime(ctx), message_requests(requests, message_id))

    return await respond("readEmails", work())


@mcp.tool(name="listMailboxes")
@inject_preferences
async def list_mailboxes(ctx: Context) -> Dict[str, Any]:
    """
    List every mailbox (folder) of every enabled account, plus "On My Mac" folders.

    Returns:
        Mailboxes as account/mailbox paths; inboxes include message and unread counts
    """
    return await respond("listMailboxes", handle_list_mailboxes(_runtime(ctx)))


@mcp.tool(name="move")
@inject_preferences
async def move(
    ctx: Context,
    requests: Optional[List[MoveRequest]] = None,
    message_id: Optional[str] = None,
    target_mailbox_name: Optional[str] = None,
    target_account_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move one or more emails to another mailbox.

    Targets are checked against the existing mailboxes before anything is moved.

    Args:
        requests: Batch of moves, each with message_id, target_mailbox_name and target_account_name
        message_id: Single-email form: ID of the email to move
        target_mailbox_name: Single-email form: destination mailbox
        target_account_name: Single-email form: account of the destination mailbox

    Returns:
        Summary ("Moved N of M") and one result per request, in order
    """
    async def work() -> Dict[str, Any]:
        batch = move_requests(requests, message_id, target_mailbox_name, target_account_name)
        return await handle_batch(_runtime(ctx), "move", batch)

    return await respond("move", work())


@mcp.tool(name="copy")
@inject_preferences
async def copy(
    ctx: Context,
    requests: Optional[List[MoveRequest]] = None,
    message_id: Optional[str] = None,
    target_mailbox_name: Optional[str] = None,
    target_account_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Copy one or more emails into another mailbox, leaving the originals in place.

    Args:
        requests: Batch of copies, each with message_id, target_mailbox_name and target_account_name
        message_id: Single-email form: ID of the email to copy
        target_mailbox_name: Single-email form: destination mailbox
        target_account_name: Single-email form: account of the destination mailbox

    Returns:
        Summary ("Copied N of M") and one result per request, in order
    """
    async def work() -> Dict[str, Any]:
        batch = move_requests(requests, message_id, target_mailbox_name, target_account_name)
        return await handle_batch(_runtime(ctx), "copy", batch)

    return await respond("copy", work())


@mcp.tool(name="archive")
@inject_preferences
async def archive(
    ctx: Context,
    requests: Optional[List[MessageRequest]] = None,
    message_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Archive one or more emails into the Archive mailbox of their own account.

    Args:
        requests: Emails to archive, each with message_id and optional location hints
        message_id: Shortcut for archiving a single email

    Returns:
        Summary ("Archived N of M") and one result per request, in order
    """
    async def work() -> Dict[str, Any]:
        return await handle_batch(_runtime(ctx), "archive", message_requests(requests, message_id))

    return await respond("archive", work())


@mcp.tool(name="trash")
@inject_preferences
async def trash(
    ctx: Context,
    requests: Optional[List[MessageRequest]] = None,
    message_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move one or more emails to the Trash mailbox of their own account (reversible).

    Args:
        requests: Emails to trash, each with message_id and optional location hints
        message_id: Shortcut for trashing a single email

    Returns:
        Summary ("Moved to trash N of M") and one result per request, in order
    """
    async def work() -> Dict[str, Any]:
        return await handle_batch(_runtime(ctx), "trash", message_requests(requests, message_id))

    return await respond("trash", work())
