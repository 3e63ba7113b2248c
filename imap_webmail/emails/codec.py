"""Message codec: raw RFC 5322 bytes to MessageBody and compose requests to raw bytes."""

import email.utils
from email.encoders import encode_base64
from email.header import Header
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.parser import BytesParser
from email.policy import default

from imap_webmail.emails.models import (
    AttachmentContent,
    AttachmentInfo,
    ComposeAttachment,
    ComposeRequest,
    MessageBody,
)
from imap_webmail.emails.rendering import render_markdown
from imap_webmail.errors import MessageEncodeError
from imap_webmail.log import logger


def _header(message: Message, name: str) -> str:
    try:
        value = message.get(name)
    except Exception as e:
        # policy.default decodes lazily; broken encoded-words raise here
        logger.debug(f"Unreadable {name} header: {e}")
        for key, raw_value in message.raw_items():
            if key.lower() == name.lower():
                return str(raw_value)
        return ""
    return str(value) if value is not None else ""


def _decode_text(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset("utf-8")
    try:
        return payload.decode(charset)
    except (UnicodeDecodeError, LookupError):
        return payload.decode("utf-8", errors="replace")


def _is_attachment(part: Message) -> bool:
    if part.is_multipart():
        return False
    disposition = str(part.get("Content-Disposition", "")).lower()
    if disposition.startswith("attachment"):
        return True
    # inline parts that carry a filename (images, documents) are still attachments
    return part.get_filename() is not None and part.get_content_maintype() != "text"


def _iter_attachments(message: Message):
    for part in message.walk():
        if _is_attachment(part):
            yield part


def parse_message(raw: bytes, uid: int | None = None, mailbox: str | None = None) -> MessageBody:
    """Decode a raw message. Never raises: malformed input yields a partial body."""
    body = MessageBody(uid=uid, mailbox=mailbox)
    try:
        message = BytesParser(policy=default).parsebytes(raw)
    except Exception as e:
        logger.warning(f"Could not parse message {mailbox}::{uid}: {e}")
        return body

    body.sender = _header(message, "From")
    body.to = _header(message, "To")
    body.subject = _header(message, "Subject")
    body.date = _header(message, "Date")

    try:
        for part in message.walk():
            if part.is_multipart():
                continue
            if _is_attachment(part):
                payload = part.get_payload(decode=True) or b""
                body.attachments.append(
                    AttachmentInfo(
                        filename=part.get_filename(),
                        content_type=part.get_content_type(),
                        size=len(payload),
                    )
                )
            elif part.get_content_type() == "text/plain" and body.text is None:
                body.text = _decode_text(part)
            elif part.get_content_type() == "text/html" and body.html is None:
                body.html = _decode_text(part)
    except Exception as e:
        logger.warning(f"Malformed MIME structure in {mailbox}::{uid}: {e}")

    if body.text is None and body.html is None:
        body.text = ""
    return body


def extract_attachment(raw: bytes, index: int) -> AttachmentContent | None:
    """Return the attachment at ``index`` (in parse order), or None."""
    if index < 0:
        return None
    try:
        message = BytesParser(policy=default).parsebytes(raw)
        parts = list(_iter_attachments(message))
    except Exception as e:
        logger.warning(f"Could not read attachments: {e}")
        return None
    if index >= len(parts):
        return None

    part = parts[index]
    content = part.get_payload(decode=True) or b""
    return AttachmentContent(
        filename=part.get_filename() or f"attachment-{index}",
        content_type=part.get_content_type() or "application/octet-stream",
        size=len(content),
        content=content,
    )


def _create_attachment_part(attachment: ComposeAttachment) -> MIMEBase:
    maintype, _, subtype = attachment.content_type.partition("/")
    if not maintype or not subtype:
        maintype, subtype = "application", "octet-stream"
    part = MIMEBase(maintype, subtype)
    part.set_payload(attachment.content)
    encode_base64(part)
    part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
    return part


def _encode_header(value: str) -> str | Header:
    # Handle values with special characters
    if any(ord(c) > 127 for c in value):
        return Header(value, "utf-8")
    return value


def build_mime_message(compose: ComposeRequest) -> Message:
    text = compose.text or ""
    html = compose.html
    if compose.markdown and text:
        html = render_markdown(text)

    if html and text:
        content: Message = MIMEMultipart("alternative")
        content.attach(MIMEText(text, "plain", "utf-8"))
        content.attach(MIMEText(html, "html", "utf-8"))
    elif html:
        content = MIMEText(html, "html", "utf-8")
    else:
        content = MIMEText(text, "plain", "utf-8")

    if compose.attachments:
        msg: Message = MIMEMultipart("mixed")
        msg.attach(content)
        for attachment in compose.attachments:
            msg.attach(_create_attachment_part(attachment))
    else:
        msg = content

    msg["From"] = _encode_header(compose.sender)
    if compose.to:
        msg["To"] = _encode_header(compose.to)
    if compose.cc:
        msg["Cc"] = _encode_header(compose.cc)
    # Bcc recipients are delivered but never written into the headers
    msg["Subject"] = _encode_header(compose.subject)
    msg["Date"] = email.utils.formatdate(localtime=False)
    msg["Message-ID"] = email.utils.make_msgid()
    if compose.in_reply_to:
        msg["In-Reply-To"] = compose.in_reply_to
    if compose.references:
        msg["References"] = compose.references
    return msg


def build_message(compose: ComposeRequest) -> bytes:
    """Serialize a compose request. Raises MessageEncodeError instead of returning nothing."""
    try:
        return build_mime_message(compose).as_bytes()
    except Exception as e:
        raise MessageEncodeError(f"Could not build message: {e}") from e


def recipients_of(compose: ComposeRequest) -> list[str]:
    """All SMTP envelope recipients: To, Cc and Bcc."""
    fields = [compose.to, compose.cc, compose.bcc]
    return [addr for _, addr in email.utils.getaddresses([f for f in fields if f]) if addr]
