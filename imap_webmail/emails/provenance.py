"""Provenance headers for copy-based moves.

A message moved to Trash gets two lines prepended to its raw bytes::

    X-MOVED-AT: <ISO-8601>\\r\\n
    X-ORIGINAL-MAILBOX: <path>\\r\\n

They are the only record of where the message came from. Restore reads
X-ORIGINAL-MAILBOX and strips both lines before appending the message back.
"""

import re
from datetime import datetime, timezone

MOVED_AT_HEADER = "X-MOVED-AT"
ORIGINAL_MAILBOX_HEADER = "X-ORIGINAL-MAILBOX"

_PROVENANCE_LINE = re.compile(rb"^(?:X-MOVED-AT|X-ORIGINAL-MAILBOX):.*", re.IGNORECASE)
_ORIGINAL_MAILBOX = re.compile(rb"^X-ORIGINAL-MAILBOX:[ \t]*(.*?)[ \t]*\r?$", re.IGNORECASE)


def iso_timestamp(now: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision and a trailing Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _split_header_block(raw: bytes) -> tuple[bytes, bytes]:
    """Split raw bytes after the blank line that ends the header block."""
    candidates = [i for i in (raw.find(b"\r\n\r\n"), raw.find(b"\n\n")) if i != -1]
    if not candidates:
        return raw, b""
    end = min(candidates)
    separator = 4 if raw[end : end + 4] == b"\r\n\r\n" else 2
    return raw[: end + separator], raw[end + separator :]


def add_provenance(raw: bytes, original_mailbox: str, moved_at: str | None = None) -> bytes:
    moved_at = moved_at or iso_timestamp()
    prefix = f"{MOVED_AT_HEADER}: {moved_at}\r\n{ORIGINAL_MAILBOX_HEADER}: {original_mailbox}\r\n"
    return prefix.encode("utf-8") + raw


def original_mailbox(raw: bytes) -> str | None:
    """X-ORIGINAL-MAILBOX of a message, or None when absent or empty.

    Only the header block is scanned; a body mentioning the header does not count.
    When stamps are stacked, the last one (the oldest, nearest the original
    headers) names where the message really came from.
    """
    header, _ = _split_header_block(raw)
    found = None
    for line in header.splitlines():
        match = _ORIGINAL_MAILBOX.match(line)
        if match:
            found = match.group(1).decode("utf-8", errors="replace").strip()
    return found or None


def strip_provenance(raw: bytes) -> bytes:
    """Remove every X-MOVED-AT / X-ORIGINAL-MAILBOX line from the header block."""
    header, rest = _split_header_block(raw)
    kept = [line for line in header.splitlines(keepends=True) if not _PROVENANCE_LINE.match(line)]
    return b"".join(kept) + rest
