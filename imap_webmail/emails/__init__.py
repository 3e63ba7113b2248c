import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from imap_webmail.config import FolderRole
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


class MailboxHandler(abc.ABC):
    """Operation-level API. Every call takes the user's IMAP credentials and owns one session."""

    @abc.abstractmethod
    async def list_messages(
        self, username: str, password: str, mailbox: str | None = None
    ) -> list["MessageHeaderSummary"]:
        """
        List header summaries of one mailbox (default: the inbox)
        """

    @abc.abstractmethod
    async def list_all_messages(self, username: str, password: str) -> list["MessageHeaderSummary"]:
        """
        List header summaries across every mailbox, skipping mailboxes that fail
        """

    @abc.abstractmethod
    async def list_role_folder(self, username: str, password: str, role: "FolderRole") -> "MailboxListing":
        """
        List the Sent, Drafts or Trash folder, whatever it is called on the server
        """

    @abc.abstractmethod
    async def fetch_message(
        self, username: str, password: str, uid: int, mailbox: str = "INBOX"
    ) -> "MessageBody | None":
        """
        Fetch and decode one message, marking it seen. None when the UID is absent.
        """

    @abc.abstractmethod
    async def get_attachment(
        self, username: str, password: str, uid: int, mailbox: str = "INBOX", index: int = 0
    ) -> "AttachmentContent | None":
        """
        Fetch one attachment of a message by its position.

        Args:
            uid: The UID of the message.
            mailbox: The mailbox holding the message.
            index: Zero-based attachment position, in the order the message lists them.

        Returns:
            AttachmentContent with the decoded bytes, or None.
        """

    @abc.abstractmethod
    async def send_mail(self, username: str, password: str, compose: "ComposeRequest") -> "SendResult":
        """
        Send a message over SMTP, then keep a copy in the Sent folder (best-effort)
        """

    @abc.abstractmethod
    async def save_draft(self, username: str, password: str, compose: "ComposeRequest") -> "ArchiveResult":
        """
        Store a compose request in the Drafts folder
        """

    @abc.abstractmethod
    async def delete_message(self, username: str, password: str, mailbox: str, uid: int) -> bool:
        """
        Permanently delete a message. Returns False if it was flagged but not expunged.
        """

    @abc.abstractmethod
    async def move_to_trash(
        self, username: str, password: str, uid: int, mailbox: str = "INBOX"
    ) -> "MoveResult":
        """
        Move a message to the Trash folder, recording where it came from.

        Returns:
            MoveResult with ``moved`` and the target, or the reason nothing changed
            (``not_found``, ``no_trash`` or ``append_failed``).
        """

    @abc.abstractmethod
    async def restore_from_trash(
        self, username: str, password: str, uid: int, trash_mailbox: str | None = None
    ) -> "RestoreResult":
        """
        Move a message out of Trash back to the mailbox it was trashed from
        """

    @abc.abstractmethod
    async def search_by_from(self, username: str, password: str, from_address: str) -> list["MessageHeaderSummary"]:
        """
        Inbox messages whose From header contains the address
        """

    @abc.abstractmethod
    async def search_messages(
        self, username: str, password: str, query: str, mailboxes: list[str] | None = None
    ) -> list["MessageHeaderSummary"]:
        """
        Header and body substring search across one or more mailboxes
        """

    @abc.abstractmethod
    async def inbox_stats(self, username: str, password: str) -> "InboxStats":
        """
        Total and unread message counts of the inbox
        """

    @abc.abstractmethod
    async def purge_trash(self, username: str, password: str, retention_days: int) -> list[int]:
        """
        Permanently delete Trash messages moved more than ``retention_days`` ago.

        Returns:
            UIDs purged from the Trash folder; empty when there is no Trash folder.
        """
