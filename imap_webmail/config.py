"""Configuration for the webmail backend.

Settings are read from ``WEBMAIL_``-prefixed environment variables or a ``.env``
file. Nested server settings use ``__`` as delimiter, e.g. ``WEBMAIL_IMAP__HOST``.
"""

from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FolderRole(str, Enum):
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"


# Ordered candidate names per role. The first candidate is the one created
# when none of them can be opened.
DEFAULT_FOLDER_ROLES: dict[FolderRole, list[str]] = {
    FolderRole.SENT: [
        "Sent",
        "Sent Items",
        "SENT",
        "Sent Mail",
        "INBOX.Sent",
        "INBOX/Sent",
        "[Gmail]/Sent Mail",
    ],
    FolderRole.DRAFTS: [
        "Drafts",
        "Draft",
        "DRAFT",
        "Draft Items",
        "INBOX.Drafts",
        "INBOX.DRAFT",
        "INBOX.DRAFTS",
    ],
    FolderRole.TRASH: [
        "Trash",
        "Deleted Items",
        "Deleted",
        "Bin",
        "INBOX.Trash",
        "INBOX.Deleted",
        "TRASH",
    ],
}

# RFC 6154 special-use attributes
SPECIAL_USE_FLAGS: dict[FolderRole, str] = {
    FolderRole.SENT: "\\Sent",
    FolderRole.DRAFTS: "\\Drafts",
    FolderRole.TRASH: "\\Trash",
}


class EmailServer(BaseModel):
    host: str
    port: int
    use_ssl: bool = False
    start_ssl: bool = False
    timeout: float = Field(default=10.0, description="Connection and command timeout in seconds")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WEBMAIL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    imap: EmailServer = Field(default_factory=lambda: EmailServer(host="localhost", port=143))
    smtp: EmailServer = Field(default_factory=lambda: EmailServer(host="localhost", port=25))

    default_inbox: str = Field(default="INBOX", description="Restore target when provenance is missing")
    folder_roles: dict[FolderRole, list[str]] = Field(
        default_factory=lambda: {role: list(names) for role, names in DEFAULT_FOLDER_ROLES.items()}
    )

    body_search_limit: int = Field(default=200, description="Most recent messages per mailbox scanned by body search")
    body_search_concurrency: int = Field(default=10, description="Concurrent body fetches during a search")

    scheduler_interval: float = Field(default=30.0, description="Seconds between scheduler passes")
    scheduler_batch_size: int = Field(default=10, description="Due jobs sent per scheduler pass")
    scheduler_max_retries: int = Field(default=3, description="Attempts before a job is marked failed")

    trash_retention_days: int = Field(default=30, description="Days a message stays in Trash before it is purged")
    purge_interval: float = Field(default=3600.0, description="Seconds between Trash purge passes")

    # Used only by the MCP tool surface, which serves a single account.
    account_username: str | None = None
    account_password: str | None = None

    log_level: str = "INFO"

    def candidates(self, role: FolderRole) -> list[str]:
        return list(self.folder_roles.get(role) or DEFAULT_FOLDER_ROLES[role])


@lru_cache
def get_settings() -> Settings:
    return Settings()
