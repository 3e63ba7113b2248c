import email.utils

import aiosmtplib

from imap_webmail.config import FolderRole, Settings
from imap_webmail.emails import MailboxHandler
from imap_webmail.emails import listing, trash
from imap_webmail.emails.archive import append_to_folder
from imap_webmail.emails.codec import build_message, extract_attachment, parse_message, recipients_of
from imap_webmail.emails.folders import open_mailbox_tolerant, role_candidates
from imap_webmail.emails.models import (
    ArchiveResult,
    AttachmentContent,
    ComposeRequest,
    InboxStats,
    MailboxListing,
    MessageBody,
    MessageHeaderSummary,
    MoveResult,
    RestoreResult,
    SendResult,
)
from imap_webmail.emails.session import ImapSession, open_session
from imap_webmail.errors import PartialArchivalFailure, SmtpSendError, WebmailError
from imap_webmail.log import logger

SENT_APPEND_FLAGS = "(\\Seen)"
DRAFT_APPEND_FLAGS = "(\\Draft \\Seen)"


class ClassicMailboxHandler(MailboxHandler):
    def __init__(self, settings: Settings):
        self.settings = settings
        self.imap_server = settings.imap
        self.smtp_server = settings.smtp

    def _session(self, username: str, password: str):
        return open_session(self.imap_server, username, password)

    async def _locate_role_folder(self, session: ImapSession, role: FolderRole) -> str | None:
        """First role candidate that exists, without creating anything."""
        for name in await role_candidates(session, role, self.settings.candidates(role)):
            try:
                return await open_mailbox_tolerant(session, name, writable=False)
            except WebmailError:
                continue
        return None

    async def list_messages(
        self, username: str, password: str, mailbox: str | None = None
    ) -> list[MessageHeaderSummary]:
        async with self._session(username, password) as session:
            return await listing.list_mailbox(session, mailbox or self.settings.default_inbox)

    async def list_all_messages(self, username: str, password: str) -> list[MessageHeaderSummary]:
        async with self._session(username, password) as session:
            return await listing.list_all(session)

    async def list_role_folder(self, username: str, password: str, role: FolderRole) -> MailboxListing:
        async with self._session(username, password) as session:
            empty_folder = None
            for name in await role_candidates(session, role, self.settings.candidates(role)):
                try:
                    opened, messages = await listing.list_mailbox_resolved(session, name)
                except Exception as e:
                    logger.debug(f"{role.value} candidate '{name}' not listable: {e}")
                    continue
                # an empty Drafts folder may just be the wrong one; keep looking
                if role is FolderRole.DRAFTS and not messages:
                    empty_folder = empty_folder or opened
                    continue
                return MailboxListing(folder=opened, messages=messages)

            if role is FolderRole.DRAFTS:
                drafts = [m for m in await listing.list_all(session) if listing.has_flag(m.flags, listing.DRAFT_FLAG)]
                if drafts:
                    return MailboxListing(folder="multiple", messages=drafts)
                if empty_folder:
                    return MailboxListing(folder=empty_folder, messages=[])

            return MailboxListing(messages=[], info=f"No {role.value} folder found")

    async def fetch_message(
        self, username: str, password: str, uid: int, mailbox: str = "INBOX"
    ) -> MessageBody | None:
        async with self._session(username, password) as session:
            # writable so that fetching BODY[] sets \Seen
            opened = await open_mailbox_tolerant(session, mailbox, writable=True)
            raw = await session.fetch_raw(uid, mark_seen=True)
            if raw is None:
                logger.info(f"Message {opened}::{uid} not found")
                return None
            return parse_message(raw, uid, opened)

    async def get_attachment(
        self, username: str, password: str, uid: int, mailbox: str = "INBOX", index: int = 0
    ) -> AttachmentContent | None:
        async with self._session(username, password) as session:
            await open_mailbox_tolerant(session, mailbox, writable=False)
            raw = await session.fetch_raw(uid)
            if raw is None:
                return None
            return extract_attachment(raw, index)

    async def _archive_sent(self, username: str, password: str, raw: bytes) -> ArchiveResult:
        candidates = self.settings.candidates(FolderRole.SENT)
        try:
            async with self._session(username, password) as session:
                ordered = await role_candidates(session, FolderRole.SENT, candidates)
                return await append_to_folder(
                    session, raw, ordered, flags=SENT_APPEND_FLAGS, create_name=candidates[0]
                )
        except Exception as e:
            raise PartialArchivalFailure(f"Could not save sent message for {username}: {e}") from e

    async def send_mail(self, username: str, password: str, compose: ComposeRequest) -> SendResult:
        raw = build_message(compose)
        recipients = recipients_of(compose)
        if not recipients:
            raise SmtpSendError("Message has no recipients")
        envelope_from = email.utils.parseaddr(compose.sender)[1] or username

        try:
            async with aiosmtplib.SMTP(
                hostname=self.smtp_server.host,
                port=self.smtp_server.port,
                use_tls=self.smtp_server.use_ssl,
                start_tls=self.smtp_server.start_ssl,
                timeout=self.smtp_server.timeout,
            ) as smtp:
                await smtp.login(username, password)
                errors, response = await smtp.sendmail(envelope_from, recipients, raw)
        except aiosmtplib.SMTPException as e:
            logger.error(f"SMTP send failed for {username}: {e}")
            raise SmtpSendError(str(e)) from e

        accepted = [r for r in recipients if r not in errors]
        logger.info(f"Sent mail from={username} accepted={accepted} rejected={list(errors)} response={response}")

        try:
            archive = await self._archive_sent(username, password, raw)
        except PartialArchivalFailure as e:
            # sending succeeded; the Sent copy is secondary
            logger.warning(str(e))
            archive = ArchiveResult(skipped="archive_failed")

        message_id = email.message_from_bytes(raw).get("Message-ID")
        return SendResult(success=True, message_id=message_id, accepted=accepted, archive=archive)

    async def save_draft(self, username: str, password: str, compose: ComposeRequest) -> ArchiveResult:
        raw = build_message(compose)
        candidates = self.settings.candidates(FolderRole.DRAFTS)
        async with self._session(username, password) as session:
            ordered = await role_candidates(session, FolderRole.DRAFTS, candidates)
            return await append_to_folder(session, raw, ordered, flags=DRAFT_APPEND_FLAGS, create_name=candidates[0])

    async def delete_message(self, username: str, password: str, mailbox: str, uid: int) -> bool:
        async with self._session(username, password) as session:
            return await trash.delete_message(session, mailbox, uid)

    async def move_to_trash(self, username: str, password: str, uid: int, mailbox: str = "INBOX") -> MoveResult:
        candidates = self.settings.candidates(FolderRole.TRASH)
        async with self._session(username, password) as session:
            ordered = await role_candidates(session, FolderRole.TRASH, candidates)
            return await trash.move_to_trash(session, uid, mailbox, ordered, create_name=candidates[0])

    async def restore_from_trash(
        self, username: str, password: str, uid: int, trash_mailbox: str | None = None
    ) -> RestoreResult:
        async with self._session(username, password) as session:
            if trash_mailbox is None:
                trash_mailbox = await self._locate_role_folder(session, FolderRole.TRASH)
                if trash_mailbox is None:
                    return RestoreResult(restored=False, reason="not_found", error="No Trash folder found")
            return await trash.restore_from_trash(session, uid, trash_mailbox, self.settings.default_inbox)

    async def search_by_from(self, username: str, password: str, from_address: str) -> list[MessageHeaderSummary]:
        async with self._session(username, password) as session:
            return await listing.search_by_header(session, self.settings.default_inbox, "FROM", from_address)

    async def search_messages(
        self, username: str, password: str, query: str, mailboxes: list[str] | None = None
    ) -> list[MessageHeaderSummary]:
        async with self._session(username, password) as session:
            return await listing.search_messages(
                session,
                query,
                mailboxes,
                body_limit=self.settings.body_search_limit,
                concurrency=self.settings.body_search_concurrency,
            )

    async def inbox_stats(self, username: str, password: str) -> InboxStats:
        messages = await self.list_messages(username, password)
        return InboxStats(total=len(messages), unread=sum(1 for m in messages if not m.seen))

    async def purge_trash(self, username: str, password: str, retention_days: int) -> list[int]:
        async with self._session(username, password) as session:
            trash_mailbox = await self._locate_role_folder(session, FolderRole.TRASH)
            if trash_mailbox is None:
                logger.debug(f"[Trash Purge] No Trash folder for {username}")
                return []
            return await trash.purge_trash(session, trash_mailbox, retention_days)
