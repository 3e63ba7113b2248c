"""Move-to-Trash, Restore, permanent delete and Trash purge on top of plain IMAP.

A move is copy-based: read the raw message, append a provenance-stamped copy
to the target, and only after the append succeeded flag and expunge the
source. The stages are::

    SOURCE_READ -> TARGET_RESOLVED -> APPENDED -> SOURCE_EXPUNGED

A failure before APPENDED leaves the source untouched. A failure while
expunging the source is logged and ignored: the message then exists twice,
which is acceptable, whereas deleting the only copy is not.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from imap_webmail.emails import listing
from imap_webmail.emails.folders import resolve_folder
from imap_webmail.emails.models import MoveResult, RestoreResult
from imap_webmail.emails.provenance import add_provenance, original_mailbox, strip_provenance
from imap_webmail.errors import AppendError, DestructiveStepBlocked, NotFoundError, WebmailError
from imap_webmail.log import logger

if TYPE_CHECKING:
    from imap_webmail.emails.session import ImapSession

DELETED_FLAG = "\\Deleted"


class MoveStage(str, Enum):
    SOURCE_READ = "source_read"
    TARGET_RESOLVED = "target_resolved"
    APPENDED = "appended"
    SOURCE_EXPUNGED = "source_expunged"


async def _read_source(session: "ImapSession", mailbox: str, uid: int) -> bytes:
    try:
        await session.open_mailbox(mailbox, writable=False)
    except NotFoundError as e:
        raise DestructiveStepBlocked("not_found", str(e)) from e
    raw = await session.fetch_raw(uid)
    if raw is None:
        raise DestructiveStepBlocked("not_found", f"UID {uid} not in '{mailbox}'")
    logger.debug(f"{MoveStage.SOURCE_READ.value}: {mailbox}::{uid} ({len(raw)} bytes)")
    return raw


async def _append_copy(session: "ImapSession", raw: bytes, target: str) -> None:
    try:
        await session.append_raw(raw, target)
    except AppendError as e:
        raise DestructiveStepBlocked("append_failed", str(e)) from e
    logger.debug(f"{MoveStage.APPENDED.value}: copy stored in '{target}'")


async def _expunge_source(session: "ImapSession", mailbox: str, uid: int) -> bool:
    """Flag and expunge the source copy. Failures are absorbed; the copy is already safe."""
    try:
        await session.open_mailbox(mailbox, writable=True)
        await session.set_flag(uid, DELETED_FLAG)
        await session.expunge(uid)
    except Exception as e:
        logger.warning(f"Could not remove {mailbox}::{uid} after copying it, message is duplicated: {e}")
        return False
    logger.debug(f"{MoveStage.SOURCE_EXPUNGED.value}: {mailbox}::{uid}")
    return True


async def move_to_trash(
    session: "ImapSession",
    uid: int,
    source_mailbox: str,
    trash_candidates: list[str],
    create_name: str | None = None,
) -> MoveResult:
    try:
        raw = await _read_source(session, source_mailbox, uid)

        resolved = await resolve_folder(session, trash_candidates, create_name=create_name)
        if resolved is None:
            raise DestructiveStepBlocked("no_trash", f"none of {trash_candidates} could be opened or created")
        logger.debug(f"{MoveStage.TARGET_RESOLVED.value}: '{resolved.name}'")
        if resolved.name == source_mailbox:
            logger.info(f"{source_mailbox}::{uid} is already in Trash, nothing to move")
            return MoveResult(moved=True, target=resolved.name)

        await _append_copy(session, add_provenance(raw, source_mailbox), resolved.name)
    except DestructiveStepBlocked as blocked:
        logger.warning(f"Move of {source_mailbox}::{uid} to Trash stopped, source untouched: {blocked}")
        return MoveResult(moved=False, reason=blocked.reason, error=blocked.detail)

    await _expunge_source(session, source_mailbox, uid)
    logger.info(f"Moved {source_mailbox}::{uid} to '{resolved.name}'")
    return MoveResult(moved=True, target=resolved.name)


async def _open_restore_target(session: "ImapSession", target: str, default_inbox: str) -> str:
    """Open ``target`` writable, creating it if needed; fall back to the default inbox."""
    try:
        await session.open_mailbox(target, writable=True)
        return target
    except WebmailError as e:
        logger.debug(f"Restore target '{target}' not available: {e}")

    try:
        await session.create_mailbox(target)
        await session.open_mailbox(target, writable=True)
        return target
    except WebmailError as e:
        logger.warning(f"Could not create restore target '{target}', using '{default_inbox}': {e}")

    try:
        await session.open_mailbox(default_inbox, writable=True)
    except WebmailError as e:
        # the append below decides whether the inbox is really unusable
        logger.warning(f"Could not open '{default_inbox}': {e}")
    return default_inbox


async def restore_from_trash(
    session: "ImapSession",
    uid: int,
    trash_mailbox: str,
    default_inbox: str = "INBOX",
) -> RestoreResult:
    try:
        raw = await _read_source(session, trash_mailbox, uid)

        origin = original_mailbox(raw)
        if origin is None:
            logger.info(f"{trash_mailbox}::{uid} has no X-ORIGINAL-MAILBOX, restoring to '{default_inbox}'")
        target = await _open_restore_target(session, origin or default_inbox, default_inbox)

        await _append_copy(session, strip_provenance(raw), target)
    except DestructiveStepBlocked as blocked:
        logger.warning(f"Restore of {trash_mailbox}::{uid} stopped, Trash copy untouched: {blocked}")
        return RestoreResult(restored=False, reason=blocked.reason, error=blocked.detail)

    await _expunge_source(session, trash_mailbox, uid)
    logger.info(f"Restored {trash_mailbox}::{uid} to '{target}'")
    return RestoreResult(restored=True, target=target)


async def delete_message(session: "ImapSession", mailbox: str, uid: int) -> bool:
    """Permanently delete a message: flag it deleted, then expunge.

    Returns False when the flag was set but the expunge failed; the message
    then stays flagged until a later expunge.
    """
    await session.open_mailbox(mailbox, writable=True)
    await session.set_flag(uid, DELETED_FLAG)
    try:
        await session.expunge(uid)
    except WebmailError as e:
        logger.warning(f"Expunge after deleting {mailbox}::{uid} failed: {e}")
        return False
    logger.info(f"Deleted {mailbox}::{uid}")
    return True


def parse_moved_at(value: str | None) -> datetime | None:
    """Parse an X-MOVED-AT value. Naive timestamps are taken as UTC; garbage gives None."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moved_at = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moved_at.tzinfo is None:
        moved_at = moved_at.replace(tzinfo=timezone.utc)
    return moved_at


async def purge_trash(
    session: "ImapSession",
    trash_mailbox: str,
    retention_days: int,
    now: datetime | None = None,
) -> list[int]:
    """Permanently delete Trash messages moved more than ``retention_days`` ago.

    Age comes from X-MOVED-AT only; messages without a readable stamp are kept.
    Returns the purged UIDs. A message that fails to delete is logged and skipped.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    purged = []
    for summary in await listing.list_mailbox(session, trash_mailbox):
        moved_at = parse_moved_at(summary.moved_at)
        if moved_at is None or moved_at >= cutoff:
            continue
        try:
            deleted = await delete_message(session, summary.mailbox, summary.uid)
        except WebmailError as e:
            logger.warning(f"[Trash Purge] Could not delete {summary.ref}: {e}")
            continue
        if deleted:
            purged.append(summary.uid)
    logger.info(f"[Trash Purge] Purged {len(purged)} message(s) from '{trash_mailbox}' older than {retention_days} days")
    return purged
