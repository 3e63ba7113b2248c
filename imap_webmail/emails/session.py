"""IMAP session provider.

Every operation opens one authenticated session, does its work and logs out on
every exit path. Sessions are never shared between operations.
"""

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aioimaplib

from imap_webmail.config import EmailServer
from imap_webmail.emails.models import Folder
from imap_webmail.errors import (
    AppendError,
    AuthenticationError,
    ImapCommandError,
    MailboxNotFoundError,
    PermissionOrTransportError,
)
from imap_webmail.log import logger

SUMMARY_HEADER_FIELDS = "FROM TO SUBJECT DATE X-MOVED-AT"

_UID_RE = re.compile(rb"UID\s+(\d+)")
_FLAGS_RE = re.compile(rb"FLAGS\s+\(([^)]*)\)")
_LIST_RE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delimiter>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$', re.IGNORECASE)


def quote_string(value: str) -> str:
    """Quote a string argument (mailbox name, search value) per RFC 3501 Section 9.

    Backslashes and double quotes inside a quoted string are escaped with a
    backslash.
    """
    escaped = value.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{escaped}"'


def _quote_mailbox(mailbox: str) -> str:
    # Some servers (notably Proton Mail Bridge) require mailbox names to be quoted
    return quote_string(mailbox)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
        return value.replace('\\"', '"').replace("\\\\", "\\")
    return value


def _status(response) -> str:
    # aioimaplib returns Response(result, lines); tests sometimes hand back plain tuples
    result = response.result if hasattr(response, "result") else response[0]
    return str(result).upper()


def _lines(response) -> list:
    if hasattr(response, "lines"):
        return list(response.lines)
    return list(response[1]) if len(response) > 1 else []


async def _send_imap_id(imap: aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL) -> None:
    """Send IMAP ID command with fallback for strict servers like 163.com.

    aioimaplib formats the command as 'ID ( "name" "value" )', which some
    servers reject with 'BAD Parse command error'; those get a raw command
    with the parenthesis format they expect.
    """
    try:
        response = await imap.id(name="imap-webmail", version="0.1.0")
        if response.result != "OK":
            await imap.protocol.execute(
                aioimaplib.Command(
                    "ID",
                    imap.protocol.new_tag(),
                    '("name" "imap-webmail" "version" "0.1.0")',
                )
            )
    except Exception as e:
        logger.warning(f"IMAP ID command failed: {e!s}")


def parse_list_response(line: bytes | str) -> Folder | None:
    """Parse a single IMAP LIST response line into a Folder.

    Format: (flags) "delimiter" name, e.g. (\\HasNoChildren \\Sent) "/" "Sent"
    """
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes | bytearray) else str(line)
    text = text.strip()
    match = _LIST_RE.match(text)
    if not match:
        return None
    raw_delimiter = match.group("delimiter")
    delimiter = None if raw_delimiter.upper() == "NIL" else _unquote(raw_delimiter)
    flags = [f for f in match.group("flags").split() if f]
    return Folder(name=_unquote(match.group("name")), delimiter=delimiter, flags=flags)


def parse_fetch_response(data: list) -> list[tuple[int, list[str], bytes]]:
    """Group FETCH response lines into (uid, flags, literal) records.

    Servers disagree on where UID and FLAGS appear: some put them on the
    ``* n FETCH (`` line before the literal, others (Proton Bridge) send them
    in a trailing ``UID n)`` line after it. Both land on the current record.
    """
    records: list[dict] = []
    current: dict | None = None
    for item in data:
        if isinstance(item, bytearray):
            if current is None:
                current = {"uid": None, "flags": [], "body": b""}
                records.append(current)
            current["body"] = bytes(item)
            continue
        if not isinstance(item, bytes):
            continue
        if b"FETCH (" in item:
            current = {"uid": None, "flags": [], "body": b""}
            records.append(current)
        if current is None:
            continue
        uid_match = _UID_RE.search(item)
        if uid_match:
            current["uid"] = int(uid_match.group(1))
        flags_match = _FLAGS_RE.search(item)
        if flags_match:
            current["flags"] = flags_match.group(1).decode("utf-8", errors="replace").split()
    return [(r["uid"], r["flags"], r["body"]) for r in records if r["uid"] is not None]


class ImapSession:
    """An authenticated IMAP connection bound to one user for one operation."""

    def __init__(self, imap: aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL, user_name: str = ""):
        self.imap = imap
        self.user_name = user_name
        self.selected: str | None = None
        self.writable = False

    async def open_mailbox(self, name: str, writable: bool = True) -> None:
        """SELECT (writable) or EXAMINE (read-only) a mailbox.

        Raises MailboxNotFoundError when the server refuses it.
        """
        if writable:
            response = await self.imap.select(_quote_mailbox(name))
        else:
            response = await self.imap.examine(_quote_mailbox(name))
        if _status(response) != "OK":
            self.selected = None
            raise MailboxNotFoundError(name, _status(response))
        self.selected = name
        self.writable = writable

    async def create_mailbox(self, name: str) -> None:
        response = await self.imap.create(_quote_mailbox(name))
        if _status(response) != "OK":
            raise ImapCommandError("CREATE", _status(response), _lines(response))
        logger.info(f"Created mailbox '{name}'")

    async def list_mailboxes(self) -> list[Folder]:
        response = await self.imap.list('""', "*")
        if _status(response) != "OK":
            raise ImapCommandError("LIST", _status(response), _lines(response))
        folders = []
        for line in _lines(response):
            folder = parse_list_response(line)
            if folder:
                folders.append(folder)
        return folders

    async def search(self, *criteria: str) -> list[int]:
        """UID SEARCH the selected mailbox. Criteria are passed as separate atoms."""
        response = await self.imap.uid_search(*(criteria or ("ALL",)))
        if _status(response) != "OK":
            raise ImapCommandError("UID SEARCH", _status(response), _lines(response))
        lines = _lines(response)
        if not lines or not lines[0]:
            return []
        first = lines[0]
        text = first.decode("utf-8", errors="replace") if isinstance(first, bytes | bytearray) else str(first)
        return [int(uid) for uid in text.split() if uid.isdigit()]

    async def fetch_summaries(self, uids: list[int]) -> list[tuple[int, list[str], bytes]]:
        """Fetch flags and summary header fields for the given UIDs without marking them seen."""
        if not uids:
            return []
        uid_list = ",".join(str(uid) for uid in uids)
        response = await self.imap.uid(
            "fetch", uid_list, f"(UID FLAGS BODY.PEEK[HEADER.FIELDS ({SUMMARY_HEADER_FIELDS})])"
        )
        if _status(response) != "OK":
            raise ImapCommandError("UID FETCH", _status(response), _lines(response))
        return parse_fetch_response(_lines(response))

    async def fetch_raw(self, uid: int, mark_seen: bool = False) -> bytes | None:
        """Fetch the full raw message, or None when the UID is not in the selected mailbox."""
        section = "BODY[]" if mark_seen else "BODY.PEEK[]"
        response = await self.imap.uid("fetch", str(uid), f"(UID {section})")
        if _status(response) != "OK":
            raise ImapCommandError("UID FETCH", _status(response), _lines(response))
        for record_uid, _, body in parse_fetch_response(_lines(response)):
            if record_uid == int(uid) and body:
                return body
        return None

    async def append_raw(self, raw: bytes, mailbox: str, flags: str | None = None) -> None:
        try:
            response = await self.imap.append(raw, mailbox=_quote_mailbox(mailbox), flags=flags)
        except Exception as e:
            raise AppendError(mailbox, str(e)) from e
        if _status(response) != "OK":
            raise AppendError(mailbox, _status(response))
        logger.debug(f"Appended {len(raw)} bytes to '{mailbox}'")

    async def set_flag(self, uid: int, flag: str) -> None:
        response = await self.imap.uid("store", str(uid), "+FLAGS", f"({flag})")
        if _status(response) != "OK":
            raise ImapCommandError("UID STORE", _status(response), _lines(response))

    async def expunge(self, uid: int | None = None) -> None:
        """EXPUNGE the selected mailbox.

        With ``uid`` and a server advertising UIDPLUS, only that message is
        removed (``UID EXPUNGE``); otherwise every ``\\Deleted`` message goes.
        """
        if uid is not None and self.imap.has_capability("UIDPLUS"):
            response = await self.imap.uid("expunge", str(uid))
            command = "UID EXPUNGE"
        else:
            response = await self.imap.expunge()
            command = "EXPUNGE"
        if _status(response) != "OK":
            raise ImapCommandError(command, _status(response), _lines(response))

    async def close(self) -> None:
        """LOGOUT, then close the socket. LOGOUT alone leaves the transport open."""
        try:
            await self.imap.logout()
        except Exception as e:
            logger.info(f"Error during logout: {e}")
        finally:
            protocol = getattr(self.imap, "protocol", None)
            transport = getattr(protocol, "transport", None) if protocol else None
            if transport is not None:
                transport.close()


@asynccontextmanager
async def open_session(server: EmailServer, user_name: str, password: str) -> AsyncIterator[ImapSession]:
    """Connect, log in and yield an ImapSession; always log out afterwards."""
    imap_class = aioimaplib.IMAP4_SSL if server.use_ssl else aioimaplib.IMAP4
    imap = imap_class(server.host, server.port, timeout=server.timeout)
    session = ImapSession(imap, user_name)
    try:
        try:
            # Wait for the connection to be established
            await imap._client_task
            await imap.wait_hello_from_server()
        except Exception as e:
            raise PermissionOrTransportError(f"Cannot connect to {server.host}:{server.port}: {e}") from e

        response = await imap.login(user_name, password)
        if _status(response) != "OK":
            raise AuthenticationError(f"IMAP login rejected for {user_name}")
        await _send_imap_id(imap)
        yield session
    finally:
        await session.close()
