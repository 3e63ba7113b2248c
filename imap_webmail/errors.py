"""Exceptions raised by the webmail backend."""


class WebmailError(Exception):
    """Base exception for all webmail errors."""


class NotFoundError(WebmailError):
    """A named resource (mailbox or message UID) does not exist."""


class MailboxNotFoundError(NotFoundError):
    def __init__(self, mailbox: str, detail: str | None = None):
        self.mailbox = mailbox
        message = f"Mailbox '{mailbox}' not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PermissionOrTransportError(WebmailError):
    """Connection, authentication or protocol failure. Callers decide whether to retry."""


class AuthenticationError(PermissionOrTransportError):
    """The mail server rejected the IMAP login."""


class ImapCommandError(PermissionOrTransportError):
    def __init__(self, command: str, result: str, lines: list | None = None):
        self.command = command
        self.result = result
        self.lines = lines or []
        super().__init__(f"IMAP {command} failed: {result} {self._detail()}".rstrip())

    def _detail(self) -> str:
        parts = []
        for line in self.lines:
            if isinstance(line, bytes | bytearray):
                parts.append(bytes(line).decode("utf-8", errors="replace"))
            else:
                parts.append(str(line))
        return " ".join(p for p in parts if p)


class AppendError(PermissionOrTransportError):
    """APPEND failed after a target mailbox was opened."""

    def __init__(self, mailbox: str, detail: str):
        self.mailbox = mailbox
        super().__init__(f"Append to '{mailbox}' failed: {detail}")


class SmtpSendError(PermissionOrTransportError):
    """SMTP delivery failed."""


class MessageEncodeError(WebmailError):
    """A compose request could not be serialized into a raw message."""


class PartialArchivalFailure(WebmailError):
    """A best-effort copy (Sent copy, draft save) failed after the primary action succeeded."""


class DestructiveStepBlocked(WebmailError):
    """A destructive step was skipped because its confirming step did not complete.

    ``reason`` is one of ``not_found``, ``no_trash`` or ``append_failed``.
    """

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)
