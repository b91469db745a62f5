"""
config.py - Configuration constants for journal_sync.

Constants are immutable and defined at module level.
Runtime settings (remote endpoint, credentials, paths) are read once
from the environment into a frozen Settings object.
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Final

# Metadata index schema versions
# Increment when the metadata projection changes; a mismatch forces a rebuild
ENTRY_INDEX_VERSION: Final[int] = 2
BOOK_INDEX_VERSION: Final[int] = 1

# Local record kinds (one body table partition + one index per kind)
KIND_ENTRIES: Final[str] = "entries"
KIND_BOOKS: Final[str] = "books"

# Remote collection names
REMOTE_ENTRY_META_COLLECTION: Final[str] = "records_meta"
REMOTE_ENTRY_COLLECTION: Final[str] = "records"
REMOTE_BOOK_COLLECTION: Final[str] = "collections"

# Synced tombstones older than this are purged locally
TOMBSTONE_RETENTION: Final[timedelta] = timedelta(days=7)

# Background upload tick
SYNC_INTERVAL_SECONDS: Final[float] = 30.0

# Remote paging
REMOTE_PAGE_SIZE: Final[int] = 500

# Progress is reported to loading observers every N scanned documents
PROGRESS_REPORT_EVERY: Final[int] = 100

# Metadata preview
PREVIEW_MAX_LENGTH: Final[int] = 100

# Body prefetch
PREFETCH_BATCH_SIZE: Final[int] = 3
PREFETCH_BATCH_DELAY_SECONDS: Final[float] = 0.2

# SQLite PRAGMA settings for the local store
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout": "5000",
}

# Environment variable names
ENV_DB_PATH: Final[str] = "JOURNAL_SYNC_DB_PATH"
ENV_REMOTE_URL: Final[str] = "JOURNAL_SYNC_REMOTE_URL"
ENV_PROJECT_ID: Final[str] = "JOURNAL_SYNC_PROJECT_ID"
ENV_AUTH_TOKEN: Final[str] = "JOURNAL_SYNC_AUTH_TOKEN"
ENV_INTERVAL: Final[str] = "JOURNAL_SYNC_INTERVAL"
ENV_LOG_LEVEL: Final[str] = "JOURNAL_SYNC_LOG_LEVEL"
ENV_SERVER_TOKEN: Final[str] = "JOURNAL_SYNC_SERVER_TOKEN"


@dataclass(frozen=True)
class Settings:
    """Process-level settings, configured at start-up."""
    db_path: str = "journal.db"
    remote_url: str | None = None
    project_id: str = "default"
    auth_token: str | None = None
    sync_interval: float = SYNC_INTERVAL_SECONDS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        interval = env.get(ENV_INTERVAL)
        return cls(
            db_path=env.get(ENV_DB_PATH, cls.db_path),
            remote_url=env.get(ENV_REMOTE_URL) or None,
            project_id=env.get(ENV_PROJECT_ID, cls.project_id),
            auth_token=env.get(ENV_AUTH_TOKEN) or None,
            sync_interval=float(interval) if interval else SYNC_INTERVAL_SECONDS,
            log_level=env.get(ENV_LOG_LEVEL, cls.log_level),
        )
