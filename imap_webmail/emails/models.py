from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FailureReason = Literal["not_found", "no_trash", "append_failed"]

REF_SEPARATOR = "::"


class MessageRef(BaseModel):
    """Composite (mailbox, uid) identifier. UIDs are only unique within a mailbox."""

    model_config = ConfigDict(frozen=True)

    mailbox: str
    uid: int

    @classmethod
    def parse(cls, value: str | int, default_mailbox: str = "INBOX") -> "MessageRef":
        """Parse ``"Sent::42"`` or a bare ``"42"`` into a reference."""
        text = str(value)
        if REF_SEPARATOR in text:
            mailbox, _, uid = text.partition(REF_SEPARATOR)
            return cls(mailbox=mailbox or default_mailbox, uid=int(uid))
        return cls(mailbox=default_mailbox, uid=int(text))

    def __str__(self) -> str:
        return f"{self.mailbox}{REF_SEPARATOR}{self.uid}"


class MessageHeaderSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: int
    mailbox: str
    sender: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    date: str = ""
    seen: bool = False
    flags: list[str] = Field(default_factory=list)
    moved_at: str | None = None  # X-MOVED-AT of messages sitting in Trash

    @property
    def ref(self) -> MessageRef:
        return MessageRef(mailbox=self.mailbox, uid=self.uid)


class AttachmentInfo(BaseModel):
    filename: str | None = None
    content_type: str = "application/octet-stream"
    size: int = 0


class AttachmentContent(BaseModel):
    filename: str
    content_type: str
    size: int
    content: bytes


class MessageBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: int | None = None
    mailbox: str | None = None
    sender: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    date: str = ""
    text: str | None = None
    html: str | None = None
    attachments: list[AttachmentInfo] = Field(default_factory=list)


class ComposeAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class ComposeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    text: str | None = None
    html: str | None = None
    markdown: bool = False  # render ``text`` to the HTML part
    in_reply_to: str | None = None
    references: str | None = None
    attachments: list[ComposeAttachment] = Field(default_factory=list)


class Folder(BaseModel):
    """IMAP folder/mailbox information"""

    name: str
    delimiter: str | None = None
    flags: list[str] = Field(default_factory=list)

    @property
    def leaf(self) -> str:
        if self.delimiter and self.delimiter in self.name:
            return self.name.rsplit(self.delimiter, 1)[-1]
        return self.name


class ResolvedFolder(BaseModel):
    name: str
    opened: bool = True
    created: bool = False


class ArchiveResult(BaseModel):
    """Outcome of a best-effort archival append: a target, or a skip reason."""

    target: str | None = None
    skipped: str | None = None

    @property
    def archived(self) -> bool:
        return self.target is not None


class MoveResult(BaseModel):
    moved: bool
    target: str | None = None
    reason: FailureReason | None = None
    error: str | None = None


class RestoreResult(BaseModel):
    restored: bool
    target: str | None = None
    reason: FailureReason | None = None
    error: str | None = None


class MailboxListing(BaseModel):
    folder: str | None = None
    messages: list[MessageHeaderSummary] = Field(default_factory=list)
    info: str | None = None


class SendResult(BaseModel):
    success: bool
    message_id: str | None = None
    accepted: list[str] = Field(default_factory=list)
    archive: ArchiveResult | None = None


class InboxStats(BaseModel):
    total: int
    unread: int


class ScheduledEmail(BaseModel):
    id: int | None = None
    username: str
    password: str = Field(repr=False)
    compose: ComposeRequest
    send_at: datetime
    status: Literal["pending", "sent", "failed"] = "pending"
    retry_count: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
