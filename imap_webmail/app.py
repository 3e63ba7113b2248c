import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from imap_webmail.config import FolderRole, get_settings
from imap_webmail.emails.classic import ClassicMailboxHandler
from imap_webmail.emails.models import (
    ArchiveResult,
    ComposeRequest,
    InboxStats,
    MailboxListing,
    MessageBody,
    MessageHeaderSummary,
    MessageRef,
    MoveResult,
    RestoreResult,
    SendResult,
)
from imap_webmail.log import logger
from imap_webmail.scheduler import InMemoryScheduleStore, run_scheduler, run_trash_purge, schedule_email

schedule_store = InMemoryScheduleStore()


def get_handler() -> ClassicMailboxHandler:
    return ClassicMailboxHandler(get_settings())


def _credentials() -> tuple[str, str]:
    settings = get_settings()
    if not settings.account_username or not settings.account_password:
        msg = "No account configured. Set WEBMAIL_ACCOUNT_USERNAME and WEBMAIL_ACCOUNT_PASSWORD."
        raise PermissionError(msg)
    return settings.account_username, settings.account_password


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    settings = get_settings()
    handler = get_handler()
    tasks = [
        asyncio.create_task(
            run_scheduler(
                schedule_store,
                handler,
                interval=settings.scheduler_interval,
                batch_size=settings.scheduler_batch_size,
                max_retries=settings.scheduler_max_retries,
            )
        )
    ]
    if settings.account_username and settings.account_password:
        tasks.append(
            asyncio.create_task(
                run_trash_purge(
                    handler,
                    settings.account_username,
                    settings.account_password,
                    interval=settings.purge_interval,
                    retention_days=settings.trash_retention_days,
                )
            )
        )
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task


mcp = FastMCP("webmail", lifespan=lifespan)

MessageRefField = Annotated[
    str,
    Field(description="Message reference 'mailbox::uid' (e.g. 'INBOX::42'), or a bare UID for the inbox."),
]


def _compose(
    to: str, subject: str, text: str | None, html: str | None, cc: str, bcc: str, markdown: bool
) -> ComposeRequest:
    username, _ = _credentials()
    return ComposeRequest(
        sender=username, to=to, cc=cc, bcc=bcc, subject=subject, text=text, html=html, markdown=markdown
    )


@mcp.tool(description="List message summaries (uid, from, to, subject, date, seen) of one mailbox.")
async def list_messages(
    mailbox: Annotated[str | None, Field(default=None, description="Mailbox name; defaults to the inbox.")] = None,
) -> list[MessageHeaderSummary]:
    username, password = _credentials()
    return await get_handler().list_messages(username, password, mailbox)


@mcp.tool(description="List the Sent, Drafts or Trash folder, whatever the server calls it.")
async def list_folder(
    role: Annotated[Literal["sent", "drafts", "trash"], Field(description="Which special folder to list.")],
) -> MailboxListing:
    username, password = _credentials()
    return await get_handler().list_role_folder(username, password, FolderRole(role))


@mcp.tool(description="List message summaries across every mailbox.")
async def list_all_messages() -> list[MessageHeaderSummary]:
    username, password = _credentials()
    return await get_handler().list_all_messages(username, password)


@mcp.tool(description="Get the decoded content of one message and mark it seen.")
async def get_message(ref: MessageRefField) -> MessageBody | None:
    username, password = _credentials()
    message_ref = MessageRef.parse(ref, get_settings().default_inbox)
    return await get_handler().fetch_message(username, password, message_ref.uid, message_ref.mailbox)


@mcp.tool(description="Save one attachment of a message, selected by position, to a local file.")
async def download_attachment(
    ref: MessageRefField,
    save_path: Annotated[str, Field(description="The absolute path where the attachment should be saved.")],
    index: Annotated[int, Field(default=0, description="Zero-based attachment position.")] = 0,
) -> str:
    username, password = _credentials()
    message_ref = MessageRef.parse(ref, get_settings().default_inbox)
    attachment = await get_handler().get_attachment(
        username, password, message_ref.uid, message_ref.mailbox, index
    )
    if attachment is None:
        msg = f"Attachment {index} not found in {message_ref}"
        raise ValueError(msg)

    save_file = Path(save_path)
    save_file.parent.mkdir(parents=True, exist_ok=True)
    save_file.write_bytes(attachment.content)
    logger.info(f"Attachment '{attachment.filename}' saved to {save_path}")
    return f"Saved '{attachment.filename}' ({attachment.content_type}, {attachment.size} bytes) to {save_file.resolve()}"


@mcp.tool(description="Send an email and keep a copy in the Sent folder.")
async def send_email(
    to: Annotated[str, Field(description="Comma-separated recipient addresses.")],
    subject: Annotated[str, Field(description="The subject of the email.")],
    text: Annotated[str | None, Field(default=None, description="Plain-text body.")] = None,
    html: Annotated[str | None, Field(default=None, description="HTML body.")] = None,
    cc: Annotated[str, Field(default="", description="Comma-separated CC addresses.")] = "",
    bcc: Annotated[str, Field(default="", description="Comma-separated BCC addresses.")] = "",
    markdown: Annotated[bool, Field(default=False, description="Render the text body as Markdown HTML.")] = False,
) -> SendResult:
    username, password = _credentials()
    compose = _compose(to, subject, text, html, cc, bcc, markdown)
    return await get_handler().send_mail(username, password, compose)


@mcp.tool(description="Save a message to the Drafts folder.")
async def save_draft(
    to: Annotated[str, Field(default="", description="Comma-separated recipient addresses.")] = "",
    subject: Annotated[str, Field(default="", description="The subject of the draft.")] = "",
    text: Annotated[str | None, Field(default=None, description="Plain-text body.")] = None,
    html: Annotated[str | None, Field(default=None, description="HTML body.")] = None,
) -> ArchiveResult:
    if not to and not subject and not (text or html):
        msg = "to, subject or body required to save a draft"
        raise ValueError(msg)
    username, password = _credentials()
    compose = _compose(to, subject, text, html, "", "", False)
    return await get_handler().save_draft(username, password, compose)


@mcp.tool(description="Move a message to Trash. The message is only removed once the Trash copy is stored.")
async def move_to_trash(ref: MessageRefField) -> MoveResult:
    username, password = _credentials()
    message_ref = MessageRef.parse(ref, get_settings().default_inbox)
    return await get_handler().move_to_trash(username, password, message_ref.uid, message_ref.mailbox)


@mcp.tool(description="Restore a message from Trash to the mailbox it was trashed from.")
async def restore_from_trash(
    ref: Annotated[str, Field(description="Message reference 'mailbox::uid' or a bare UID in the Trash folder.")],
) -> RestoreResult:
    username, password = _credentials()
    if "::" in ref:
        message_ref = MessageRef.parse(ref)
        return await get_handler().restore_from_trash(username, password, message_ref.uid, message_ref.mailbox)
    return await get_handler().restore_from_trash(username, password, int(ref))


@mcp.tool(description="Permanently delete a message (no Trash copy).")
async def delete_message(ref: MessageRefField) -> str:
    username, password = _credentials()
    message_ref = MessageRef.parse(ref, get_settings().default_inbox)
    expunged = await get_handler().delete_message(username, password, message_ref.mailbox, message_ref.uid)
    if expunged:
        return f"Deleted {message_ref}"
    return f"Flagged {message_ref} as deleted; it will disappear on the next expunge"


@mcp.tool(description="Search headers and bodies for a substring across mailboxes.")
async def search_messages(
    query: Annotated[str, Field(description="Text to look for.")],
    mailboxes: Annotated[
        list[str] | None, Field(default=None, description="Mailboxes to search; all when omitted.")
    ] = None,
) -> list[MessageHeaderSummary]:
    username, password = _credentials()
    return await get_handler().search_messages(username, password, query, mailboxes)


@mcp.tool(description="Total and unread message counts of the inbox.")
async def inbox_stats() -> InboxStats:
    username, password = _credentials()
    return await get_handler().inbox_stats(username, password)


@mcp.tool(description="Schedule an email to be sent at a later time (UTC when no timezone is given).")
async def schedule_send(
    to: Annotated[str, Field(description="Comma-separated recipient addresses.")],
    subject: Annotated[str, Field(description="The subject of the email.")],
    send_at: Annotated[datetime, Field(description="When to send the email.")],
    text: Annotated[str | None, Field(default=None, description="Plain-text body.")] = None,
    html: Annotated[str | None, Field(default=None, description="HTML body.")] = None,
) -> str:
    username, password = _credentials()
    compose = _compose(to, subject, text, html, "", "", False)
    job = await schedule_email(schedule_store, username, password, compose, send_at)
    return f"Scheduled job {job.id} for {job.send_at.isoformat()}"


@mcp.tool(description="List scheduled emails and their status.")
async def list_scheduled() -> list[dict]:
    username, _ = _credentials()
    jobs = await schedule_store.list_for_user(username)
    return [job.model_dump(mode="json", exclude={"password"}) for job in jobs]


@mcp.tool(description="Cancel a pending scheduled email.")
async def cancel_scheduled(job_id: Annotated[int, Field(description="The scheduled job id.")]) -> str:
    username, _ = _credentials()
    if await schedule_store.cancel(job_id, username):
        return f"Cancelled job {job_id}"
    return f"Job {job_id} not found or no longer pending"


def main() -> None:
    mcp.run()
