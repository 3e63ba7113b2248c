"""Listing and search of message header summaries."""

import asyncio
from email.parser import BytesParser
from email.policy import default
from typing import TYPE_CHECKING

from imap_webmail.emails.codec import parse_message
from imap_webmail.emails.folders import open_mailbox_tolerant
from imap_webmail.emails.models import Folder, MessageHeaderSummary
from imap_webmail.emails.session import quote_string
from imap_webmail.log import logger

if TYPE_CHECKING:
    from imap_webmail.emails.session import ImapSession

SEEN_FLAG = "\\Seen"
DRAFT_FLAG = "\\Draft"


def has_flag(flags: list[str], flag: str) -> bool:
    """Case-insensitive flag test; ``\\Seen``, ``\\SEEN`` and ``seen`` all match ``\\Seen``."""
    wanted = flag.lstrip("\\").lower()
    return any(str(f).lstrip("\\").lower() == wanted for f in flags)


def is_seen(flags: list[str]) -> bool:
    return has_flag(flags, SEEN_FLAG)


def is_selectable(folder: Folder) -> bool:
    return not has_flag(folder.flags, "\\Noselect") and not has_flag(folder.flags, "\\NonExistent")


def summarize(uid: int, flags: list[str], raw_headers: bytes, mailbox: str) -> MessageHeaderSummary:
    summary = MessageHeaderSummary(uid=uid, mailbox=mailbox, seen=is_seen(flags), flags=list(flags))
    try:
        headers = BytesParser(policy=default).parsebytes(raw_headers, headersonly=True)
        summary.sender = str(headers.get("From", ""))
        summary.to = str(headers.get("To", ""))
        summary.subject = str(headers.get("Subject", ""))
        summary.date = str(headers.get("Date", ""))
        moved_at = headers.get("X-MOVED-AT")
        summary.moved_at = str(moved_at).strip() if moved_at else None
    except Exception as e:
        logger.warning(f"Unreadable headers for {mailbox}::{uid}: {e}")
    return summary


async def _summaries(session: "ImapSession", mailbox: str, uids: list[int]) -> list[MessageHeaderSummary]:
    records = await session.fetch_summaries(uids)
    return [summarize(uid, flags, headers, mailbox) for uid, flags, headers in records]


async def list_mailbox_resolved(session: "ImapSession", mailbox: str) -> tuple[str, list[MessageHeaderSummary]]:
    """Like list_mailbox, also returning the mailbox name that was actually opened."""
    opened = await open_mailbox_tolerant(session, mailbox, writable=False)
    uids = await session.search("ALL")
    return opened, await _summaries(session, opened, uids)


async def list_mailbox(session: "ImapSession", mailbox: str) -> list[MessageHeaderSummary]:
    """Summaries of every message in ``mailbox``.

    The name need not match verbatim; ``sent`` finds ``INBOX.Sent``. Raises
    NotFoundError when no mailbox matches.
    """
    _, messages = await list_mailbox_resolved(session, mailbox)
    return messages


async def list_all(session: "ImapSession") -> list[MessageHeaderSummary]:
    """Summaries across every mailbox. A mailbox that fails is logged and skipped."""
    messages: list[MessageHeaderSummary] = []
    for folder in await session.list_mailboxes():
        if not is_selectable(folder):
            continue
        try:
            await session.open_mailbox(folder.name, writable=False)
            uids = await session.search("ALL")
            messages.extend(await _summaries(session, folder.name, uids))
        except Exception as e:
            logger.warning(f"Failed to read mailbox '{folder.name}': {e}")
    return messages


async def search_by_header(
    session: "ImapSession", mailbox: str, field: str, value: str
) -> list[MessageHeaderSummary]:
    """Structured ``HEADER <field> <value>`` search. Any failure yields no matches."""
    try:
        opened = await open_mailbox_tolerant(session, mailbox, writable=False)
        uids = await session.search("HEADER", field.upper(), quote_string(value))
        return await _summaries(session, opened, uids)
    except Exception as e:
        logger.error(f"Header search {field}={value!r} in '{mailbox}' failed: {e}")
        return []


async def _body_matches(
    session: "ImapSession", mailbox: str, uids: list[int], query: str, concurrency: int
) -> set[int]:
    needle = query.lower()
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def matches(uid: int) -> int | None:
        async with semaphore:
            try:
                raw = await session.fetch_raw(uid)
            except Exception as e:
                logger.debug(f"Body fetch of {mailbox}::{uid} failed: {e}")
                return None
        if raw is None:
            return None
        body = parse_message(raw, uid, mailbox)
        haystack = f"{body.text or ''}\n{body.html or ''}".lower()
        return uid if needle in haystack else None

    found = await asyncio.gather(*(matches(uid) for uid in uids))
    return {uid for uid in found if uid is not None}


async def search_messages(
    session: "ImapSession",
    query: str,
    mailboxes: list[str] | None = None,
    body_limit: int = 200,
    concurrency: int = 10,
) -> list[MessageHeaderSummary]:
    """Search headers (From, To, Subject) server-side and bodies client-side.

    Bodies are scanned for at most ``body_limit`` of the most recent messages
    per mailbox. Each (mailbox, uid) appears once in the result; ordering is
    not guaranteed.
    """
    if mailboxes is None:
        mailboxes = [f.name for f in await session.list_mailboxes() if is_selectable(f)]

    quoted = quote_string(query)
    results: dict[tuple[str, int], MessageHeaderSummary] = {}
    for name in mailboxes:
        try:
            opened = await open_mailbox_tolerant(session, name, writable=False)
            header_hits = set(await session.search("OR", "OR", "FROM", quoted, "TO", quoted, "SUBJECT", quoted))
            recent = sorted(await session.search("ALL"))[-body_limit:] if body_limit > 0 else []
            candidates = [uid for uid in recent if uid not in header_hits]
            body_hits = await _body_matches(session, opened, candidates, query, concurrency)
            for summary in await _summaries(session, opened, sorted(header_hits | body_hits)):
                results.setdefault((summary.mailbox, summary.uid), summary)
        except Exception as e:
            logger.warning(f"Search in '{name}' failed: {e}")
    return list(results.values())
