"""
JavaScript for Automation sources run against Apple Mail, and the parsing
of what comes back.

Every script is a JS function taking ``Mail`` followed by its own arguments.
``build_script`` wraps it in a ``run(argv)`` handler that receives the
arguments as one JSON document on argv, so no caller-supplied text is ever
spliced into script source. The handler returns the function's result as
JSON, or an ``{"error": ..., "errorNumber": ...}`` record if it threw.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

# osascript error numbers meaning Mail itself is unreachable
UNAVAILABLE_ERROR_NUMBERS = {-600, -609, -903, -1743}
_UNAVAILABLE_PATTERNS = (
    "application isn't running",
    "application is not running",
    "connection is invalid",
    "not authorized to send apple events",
    "can't get application",
)
_ERROR_NUMBER_RE = re.compile(r"\((-?\d+)\)\s*$")


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class ParseError:
    raw: str


@dataclass(frozen=True)
class BridgeError:
    reason: str
    code: Optional[int] = None

    @property
    def unavailable(self) -> bool:
        if self.code in UNAVAILABLE_ERROR_NUMBERS:
            return True
        lowered = self.reason.lower()
        return any(pattern in lowered for pattern in _UNAVAILABLE_PATTERNS)


BridgeResult = Union[Ok, ParseError, BridgeError]


def error_from_stderr(stderr: str, returncode: int) -> BridgeError:
    """Turn osascript's stderr ("... execution error: Error: msg (-600)") into a BridgeError."""
    text = (stderr or "").strip() or f"osascript exited with code {returncode}"
    code = None
    match = _ERROR_NUMBER_RE.search(text)
    if match:
        code = int(match.group(1))
    return BridgeError(reason=text, code=code)


def interpret_response(raw: Any) -> BridgeResult:
    """
    Classify a bridge response.

    The bridge may hand back a record, a list of records, JSON text that
    still needs decoding, or a plain error string. Anything else that is
    text but not JSON is a ParseError carrying the raw text.
    """
    if isinstance(raw, (BridgeError, ParseError, Ok)):
        return raw
    if isinstance(raw, dict):
        if "error" in raw and len(set(raw) - {"error", "errorNumber"}) == 0:
            return BridgeError(reason=str(raw["error"]), code=_as_int(raw.get("errorNumber")))
        return Ok(raw)
    if isinstance(raw, (list, tuple)):
        return Ok(list(raw))
    if raw is None or isinstance(raw, (bool, int, float)):
        return Ok(raw)

    text = str(raw).strip()
    if not text:
        return Ok(None)
    if text.lower().startswith(("error:", "error ")) or "execution error" in text.lower():
        return error_from_stderr(text, 1)
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return ParseError(raw=text)
    if isinstance(decoded, str):
        # double-encoded payloads come back as a JSON string
        return interpret_response(decoded) if decoded.strip()[:1] in ("{", "[") else Ok(decoded)
    return interpret_response(decoded) if isinstance(decoded, dict) else Ok(decoded)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


PRELUDE = r"""
function findAccount(Mail, name) {
    var matches = Mail.accounts.whose({name: name})();
    return matches.length ? matches[0] : null;
}

function findMailbox(Mail, accountName, mailboxName, isLocal) {
    if (isLocal) {
        var local = Mail.localMailboxes.whose({name: mailboxName})();
        return local.length ? local[0] : null;
    }
    var account = findAccount(Mail, accountName);
    if (!account) return null;
    var boxes = account.mailboxes.whose({name: mailboxName})();
    return boxes.length ? boxes[0] : null;
}

function findMessage(box, messageId) {
    var msgs = box.messages.whose({messageId: messageId})();
    return msgs.length ? msgs[0] : null;
}

function requireMessage(Mail, accountName, mailboxName, isLocal, messageId, action) {
    var box = findMailbox(Mail, accountName, mailboxName, isLocal);
    if (!box) throw new Error("Mailbox " + accountName + "/" + mailboxName + " not found during " + action);
    var msg = findMessage(box, messageId);
    if (!msg) throw new Error("Message " + messageId + " not found during " + action);
    return msg;
}

function describeMessage(msg, accountName, mailboxName, withContent) {
    var received = null;
    try { received = msg.dateReceived(); } catch (e) {}
    var record = {
        message_id: String(msg.messageId()),
        subject: msg.subject() || null,
        sender: msg.sender() || null,
        date_received: received ? received.toISOString() : null,
        is_read: msg.readStatus(),
        is_flagged: msg.flaggedStatus(),
        account: accountName,
        mailbox: mailboxName
    };
    if (withContent) record.content = msg.content();
    return record;
}

function draftIdOf(draft) {
    try { return String(draft.id()); } catch (e) { return null; }
}

function attachTo(Mail, draft, attachmentPath) {
    if (!attachmentPath) return null;
    try {
        draft.attachments.push(Mail.Attachment({fileName: Path(attachmentPath)}));
        delay(0.5);
        return null;
    } catch (e) {
        return String(e && e.message ? e.message : e);
    }
}
"""

WRAPPER = r"""
%(prelude)s

function run(argv) {
    var args = JSON.parse(argv[0] || "[]");
    var Mail = Application("Mail");
    var fn = %(function)s;
    try {
        var result = fn.apply(null, [Mail].concat(args));
        return JSON.stringify(result === undefined ? null : result);
    } catch (e) {
        return JSON.stringify({
            error: String(e && e.message ? e.message : e),
            errorNumber: e && e.errorNumber !== undefined ? e.errorNumber : null
        });
    }
}
"""


def build_script(function_source: str) -> str:
    return WRAPPER % {"prelude": PRELUDE, "function": function_source.strip()}


def encode_args(*args: Any) -> str:
    return json.dumps(list(args), ensure_ascii=False)


IS_RUNNING = r"""
function (Mail) {
    return {running: Mail.running()};
}
"""

LAUNCH = r"""
function (Mail) {
    Mail.activate();
    delay(2);
    return {running: Mail.running()};
}
"""

READ_DIRECTORY = r"""
function (Mail, localAccountName) {
    var accounts = [];
    var mailboxes = [];

    function describeBox(accountName, box, isLocal) {
        var name = box.name();
        var entry = {account: accountName, name: name, is_local: isLocal};
        if (name.toLowerCase() === "inbox") {
            try { entry.total_count = box.messages.length; } catch (e) { entry.total_count = -1; }
            try { entry.unread_count = box.unreadCount(); } catch (e) { entry.unread_count = -1; }
        }
        return entry;
    }

    var allAccounts = Mail.accounts();
    for (var i = 0; i < allAccounts.length; i++) {
        var account = allAccounts[i];
        var accountName = account.name();
        var enabled = true;
        try { enabled = account.enabled(); } catch (e) {}
        accounts.push({name: accountName, enabled: enabled});
        if (!enabled) continue;
        var boxes = account.mailboxes();
        for (var j = 0; j < boxes.length; j++) {
            mailboxes.push(describeBox(accountName, boxes[j], false));
        }
    }

    try {
        var localBoxes = Mail.localMailboxes();
        for (var k = 0; k < localBoxes.length; k++) {
            mailboxes.push(describeBox(localAccountName, localBoxes[k], true));
        }
    } catch (e) {
        // older Mail versions have no local mailbox container
    }

    return {accounts: accounts, mailboxes: mailboxes};
}
"""

FIND_ACCOUNT = r"""
function (Mail, accountName) {
    var account = findAccount(Mail, accountName);
    if (!account) return null;
    var enabled = true;
    try { enabled = account.enabled(); } catch (e) {}
    return {name: account.name(), enabled: enabled};
}
"""

FIND_MAILBOX = r"""
function (Mail, accountName, mailboxName, isLocal) {
    var box = findMailbox(Mail, accountName, mailboxName, isLocal);
    if (!box) return null;
    return {account: accountName, name: box.name(), is_local: isLocal};
}
"""

FIND_MESSAGE = r"""
function (Mail, accountName, mailboxName, isLocal, messageId, withContent) {
    var box = findMailbox(Mail, accountName, mailboxName, isLocal);
    if (!box) throw new Error("Mailbox " + accountName + "/" + mailboxName + " not found");
    var msg = findMessage(box, messageId);
    if (!msg) return null;
    return describeMessage(msg, accountName, mailboxName, withContent);
}
"""

FETCH_MESSAGES = r"""
function (Mail, accountName, mailboxName, isLocal, cap) {
    if (!isLocal) {
        var account = findAccount(Mail, accountName);
        if (!account || !account.enabled()) return [];
    }
    var box = findMailbox(Mail, accountName, mailboxName, isLocal);
    if (!box) return [];
    var total = box.messages.length;
    var count = Math.min(total, cap);
    var records = [];
    for (var i = 0; i < count; i++) {
        try {
            records.push(describeMessage(box.messages[i], accountName, mailboxName, false));
        } catch (e) {
            // message vanished while listing
        }
    }
    return records;
}
"""

MOVE_MESSAGE = r"""
function (Mail, srcAccount, srcMailbox, srcLocal, messageId, dstAccount, dstMailbox, dstLocal) {
    var msg = requireMessage(Mail, srcAccount, srcMailbox, srcLocal, messageId, "move");
    var target = findMailbox(Mail, dstAccount, dstMailbox, dstLocal);
    if (!target) throw new Error("Target mailbox " + dstAccount + "/" + dstMailbox + " not found");
    Mail.move(msg, {to: target});
    return true;
}
"""

DUPLICATE_MESSAGE = r"""
function (Mail, srcAccount, srcMailbox, srcLocal, messageId, dstAccount, dstMailbox, dstLocal) {
    var msg = requireMessage(Mail, srcAccount, srcMailbox, srcLocal, messageId, "copy");
    var target = findMailbox(Mail, dstAccount, dstMailbox, dstLocal);
    if (!target) throw new Error("Target mailbox " + dstAccount + "/" + dstMailbox + " not found");
    Mail.duplicate(msg, {to: target});
    return true;
}
"""

ARCHIVE_MESSAGE = r"""
function (Mail, srcAccount, srcMailbox, srcLocal, messageId) {
    var msg = requireMessage(Mail, srcAccount, srcMailbox, srcLocal, messageId, "archive");
    Mail.archive(msg);
    return true;
}
"""

CREATE_OUTGOING = r"""
function (Mail, subject, body, toAddress, attachmentPath) {
    var draft = Mail.OutgoingMessage().make();
    draft.visible = true;
    draft.subject = subject;
    draft.content = body;
    if (toAddress) {
        draft.toRecipients.push(Mail.Recipient({address: toAddress}));
    }
    return {
        draft_id: draftIdOf(draft),
        content_merged: true,
        attachment_error: attachTo(Mail, draft, attachmentPath)
    };
}
"""

# The reply window fills its quoted text asynchronously, so the read-back
# is retried here, inside the run that holds the reply reference.
CREATE_REPLY = r"""
function (Mail, accountName, mailboxName, isLocal, messageId, prefix,
          settleSeconds, readAttempts, readDelay, attachmentPath) {
    var msg = requireMessage(Mail, accountName, mailboxName, isLocal, messageId, "reply");
    Mail.activate();
    var reply = Mail.reply(msg, {openingWindow: true});
    if (settleSeconds > 0) delay(settleSeconds);

    var quoted = "";
    var attempts = Math.max(1, readAttempts);
    for (var i = 0; i < attempts; i++) {
        try { quoted = reply.content() || ""; } catch (e) { quoted = ""; }
        if (quoted.replace(/\s/g, "").length) break;
        if (i < attempts - 1 && readDelay > 0) delay(readDelay);
    }
    reply.content = prefix + quoted;

    return {
        draft_id: draftIdOf(reply),
        content_merged: quoted.replace(/\s/g, "").length > 0,
        attachment_error: attachTo(Mail, reply, attachmentPath)
    };
}
"""
