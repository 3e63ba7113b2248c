"""Webmail backend that emulates Drafts, Sent, Trash and restore semantics on plain IMAP."""

__version__ = "0.1.0"
