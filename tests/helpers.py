"""Test doubles and message builders shared by the test modules."""

from collections import namedtuple
from email.message import EmailMessage
from email.parser import BytesParser
from email.policy import default

from imap_webmail.emails.models import Folder
from imap_webmail.errors import AppendError, ImapCommandError, MailboxNotFoundError

Response = namedtuple("Response", "result lines")


def make_raw(
    subject: str = "Hello",
    sender: str = "alice@example.com",
    to: str = "bob@example.com",
    text: str | None = "Plain body",
    html: str | None = None,
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg["Date"] = "Mon, 1 Jan 2024 12:00:00 +0000"
    msg.set_content(text or "")
    if html:
        msg.add_alternative(html, subtype="html")
    for filename, content_type, data in attachments or []:
        maintype, subtype = content_type.split("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
    return msg.as_bytes()


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


class FakeSession:
    """In-memory stand-in for ImapSession.

    ``calls`` records mutating commands in order so tests can assert that a
    source is never expunged before its copy was appended.
    """

    def __init__(
        self,
        mailboxes: dict[str, list[bytes]] | None = None,
        delimiter: str = ".",
        can_create: bool = True,
        unopenable: set[str] | None = None,
        fail_append: set[str] | None = None,
        fail_expunge: bool = False,
        special_use: dict[str, list[str]] | None = None,
        uidplus: bool = True,
    ):
        self.delimiter = delimiter
        self.can_create = can_create
        self.unopenable = unopenable or set()
        self.fail_append = fail_append or set()
        self.fail_expunge = fail_expunge
        self.uidplus = uidplus
        self.special_use = special_use or {}
        self.boxes: dict[str, dict[int, dict]] = {}
        self.next_uid: dict[str, int] = {}
        self.selected: str | None = None
        self.calls: list[tuple] = []
        self.closed = False
        for name, messages in (mailboxes or {"INBOX": []}).items():
            self.boxes[name] = {}
            self.next_uid[name] = 1
            for raw in messages:
                self.add(name, raw)

    def add(self, mailbox: str, raw: bytes, flags: list[str] | None = None) -> int:
        uid = self.next_uid[mailbox]
        self.next_uid[mailbox] += 1
        self.boxes[mailbox][uid] = {"raw": raw, "flags": list(flags or [])}
        return uid

    def raw(self, mailbox: str, uid: int) -> bytes:
        return self.boxes[mailbox][uid]["raw"]

    def flags(self, mailbox: str, uid: int) -> list[str]:
        return self.boxes[mailbox][uid]["flags"]

    async def open_mailbox(self, name: str, writable: bool = True) -> None:
        if name not in self.boxes or name in self.unopenable:
            raise MailboxNotFoundError(name)
        self.selected = name

    async def create_mailbox(self, name: str) -> None:
        self.calls.append(("create", name))
        if not self.can_create or name in self.boxes:
            raise ImapCommandError("CREATE", "NO")
        self.boxes[name] = {}
        self.next_uid[name] = 1

    async def list_mailboxes(self) -> list[Folder]:
        return [Folder(name=n, delimiter=self.delimiter, flags=self.special_use.get(n, [])) for n in self.boxes]

    def _headers(self, raw: bytes):
        return BytesParser(policy=default).parsebytes(raw, headersonly=True)

    async def search(self, *criteria: str) -> list[int]:
        box = self.boxes[self.selected]
        if not criteria or criteria[0] == "ALL":
            return sorted(box)
        if criteria[0] == "HEADER":
            fields, value = [criteria[1]], _unquote(criteria[2])
        elif criteria[0] == "OR":
            fields = [c for c in criteria if c in ("FROM", "TO", "SUBJECT")]
            value = _unquote(criteria[-1])
        else:
            raise ImapCommandError("UID SEARCH", "BAD")
        hits = []
        for uid, message in box.items():
            headers = self._headers(message["raw"])
            if any(value.lower() in str(headers.get(f, "")).lower() for f in fields):
                hits.append(uid)
        return sorted(hits)

    async def fetch_summaries(self, uids: list[int]) -> list[tuple[int, list[str], bytes]]:
        box = self.boxes[self.selected]
        records = []
        for uid in uids:
            if uid in box:
                header = box[uid]["raw"].split(b"\r\n\r\n", 1)[0].split(b"\n\n", 1)[0] + b"\r\n\r\n"
                records.append((uid, list(box[uid]["flags"]), header))
        return records

    async def fetch_raw(self, uid: int, mark_seen: bool = False) -> bytes | None:
        message = self.boxes[self.selected].get(int(uid))
        if message is None:
            return None
        if mark_seen and "\\Seen" not in message["flags"]:
            message["flags"].append("\\Seen")
        return message["raw"]

    async def append_raw(self, raw: bytes, mailbox: str, flags: str | None = None) -> None:
        self.calls.append(("append", mailbox))
        if mailbox in self.fail_append or mailbox not in self.boxes:
            raise AppendError(mailbox, "NO")
        parsed_flags = flags.strip("()").split() if flags else []
        self.add(mailbox, raw, parsed_flags)

    async def set_flag(self, uid: int, flag: str) -> None:
        self.calls.append(("store", self.selected, uid, flag))
        message = self.boxes[self.selected].get(int(uid))
        if message is not None and flag not in message["flags"]:
            message["flags"].append(flag)

    async def expunge(self, uid: int | None = None) -> None:
        self.calls.append(("expunge", self.selected))
        if self.fail_expunge:
            raise ImapCommandError("EXPUNGE", "NO")
        box = self.boxes[self.selected]
        deleted = [u for u, m in box.items() if "\\Deleted" in m["flags"]]
        if uid is not None and self.uidplus:
            deleted = [u for u in deleted if u == int(uid)]
        for u in deleted:
            del box[u]

    async def close(self) -> None:
        self.closed = True


