"""
schema.py - Local store table definitions.

Two logical collections per record kind, partitioned by a kind column:
- records: full record bodies keyed by id
- record_index: one metadata index document per kind
"""

import sqlite3
from typing import Final

from journal_sync.errors import StoreError

RECORDS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS records (
    kind TEXT NOT NULL,
    id TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (kind, id)
) STRICT;
"""

RECORD_INDEX_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS record_index (
    kind TEXT PRIMARY KEY,
    value BLOB NOT NULL
) STRICT;
"""

ALL_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    RECORDS_SCHEMA,
    RECORD_INDEX_SCHEMA,
)


def initialize_tables(conn: sqlite3.Connection) -> None:
    """
    Create the local store tables.

    Idempotent: can be called multiple times safely.

    Raises:
        StoreError: If schema creation fails
    """
    try:
        for statement in ALL_SCHEMA_STATEMENTS:
            conn.execute(statement)
    except sqlite3.Error as e:
        raise StoreError(
            f"Failed to create store tables: {e}",
            operation="create_tables",
        ) from e
