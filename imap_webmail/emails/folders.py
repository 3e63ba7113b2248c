"""Folder resolution.

Maps a logical role (Sent, Drafts, Trash) onto a real mailbox on a server that
may name it ``Sent``, ``Sent Items``, ``INBOX.Sent`` or anything else, creating
it when none of the candidates exist.
"""

import re
from typing import TYPE_CHECKING

from imap_webmail.config import SPECIAL_USE_FLAGS, FolderRole
from imap_webmail.emails.models import Folder, ResolvedFolder
from imap_webmail.errors import NotFoundError, WebmailError
from imap_webmail.log import logger

if TYPE_CHECKING:
    from imap_webmail.emails.session import ImapSession

_SEGMENT_SPLIT = re.compile(r"[./]")


async def resolve_folder(
    session: "ImapSession", candidates: list[str], create_name: str | None = None
) -> ResolvedFolder | None:
    """Open the first candidate that can be opened writable, else create one.

    The mailbox created is ``create_name`` when given, otherwise the first
    candidate. Candidates are used verbatim (case-sensitive). Returns None when nothing
    could be opened or created; the caller must then leave source data alone.
    The resolved mailbox is left selected on the session.
    """
    candidates = [c for c in candidates if c]
    for name in candidates:
        try:
            await session.open_mailbox(name, writable=True)
        except WebmailError as e:
            logger.debug(f"Folder '{name}' not available: {e}")
            continue
        logger.debug(f"Resolved folder '{name}'")
        return ResolvedFolder(name=name, opened=True, created=False)

    target = create_name or (candidates[0] if candidates else None)
    if not target:
        return None
    try:
        await session.create_mailbox(target)
        await session.open_mailbox(target, writable=True)
    except WebmailError as e:
        logger.warning(f"Could not create folder '{target}': {e}")
        return None
    return ResolvedFolder(name=target, opened=True, created=True)


def find_mailbox(folders: list[Folder], target: str) -> str | None:
    """Case-insensitive lookup of ``target`` in a flattened mailbox tree.

    Matches the full path, the last path segment, or an ``INBOX.<target>`` variant.
    """
    target_lower = target.lower()
    inbox_variant = f"inbox.{target_lower}"
    for folder in folders:
        full = folder.name.lower()
        last = _last_segment(folder).lower()
        if full == target_lower or last == target_lower or full == inbox_variant:
            return folder.name
    return None


def _last_segment(folder: Folder) -> str:
    if folder.delimiter:
        return folder.leaf
    return _SEGMENT_SPLIT.split(folder.name)[-1]


async def open_mailbox_tolerant(session: "ImapSession", name: str, writable: bool = False) -> str:
    """Open ``name``, falling back to a case-insensitive search of the mailbox tree.

    Returns the name that was actually opened. Re-raises the original
    NotFoundError when no mailbox matches.
    """
    try:
        await session.open_mailbox(name, writable=writable)
        return name
    except NotFoundError as open_error:
        folders = await session.list_mailboxes()
        found = find_mailbox(folders, name)
        if not found or found == name:
            raise open_error
        logger.debug(f"Mailbox '{name}' resolved to '{found}'")
        await session.open_mailbox(found, writable=writable)
        return found


async def role_candidates(session: "ImapSession", role: FolderRole, candidates: list[str]) -> list[str]:
    """Put the mailbox carrying the role's special-use flag (e.g. \\Sent) ahead of the name guesses."""
    special_use = SPECIAL_USE_FLAGS[role].lower()
    try:
        folders = await session.list_mailboxes()
    except WebmailError as e:
        logger.debug(f"Could not list mailboxes for {role.value} discovery: {e}")
        return list(candidates)

    for folder in folders:
        if any(flag.lower() == special_use for flag in folder.flags):
            logger.info(f"Found {role.value} folder by {SPECIAL_USE_FLAGS[role]} flag: '{folder.name}'")
            return [folder.name] + [c for c in candidates if c != folder.name]
    return list(candidates)
