from typing import TYPE_CHECKING

from imap_webmail.emails.folders import resolve_folder
from imap_webmail.emails.models import ArchiveResult
from imap_webmail.log import logger

if TYPE_CHECKING:
    from imap_webmail.emails.session import ImapSession

NO_WRITABLE_FOLDER = "no_writable_folder"


async def append_to_folder(
    session: "ImapSession",
    raw: bytes,
    candidates: list[str],
    flags: str | None = None,
    create_name: str | None = None,
) -> ArchiveResult:
    """Append the full raw message to the first writable candidate folder.

    Returns a skipped result when no folder can be opened or created. An
    append that fails after a folder was resolved raises AppendError.
    """
    resolved = await resolve_folder(session, candidates, create_name=create_name)
    if resolved is None:
        logger.warning(f"No writable folder among {candidates}, skipping append")
        return ArchiveResult(skipped=NO_WRITABLE_FOLDER)

    await session.append_raw(raw, resolved.name, flags=flags)
    logger.info(f"Archived message to '{resolved.name}'")
    return ArchiveResult(target=resolved.name)
