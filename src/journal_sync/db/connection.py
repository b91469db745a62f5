"""
connection.py - SQLite connection handling for the local record store.

One connection per LocalStore, shared across threads and serialized
by the store lock. Transactions are explicit (BEGIN IMMEDIATE) so a
record body and its index entry are always written together.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from journal_sync.config import SQLITE_PRAGMAS
from journal_sync.errors import StoreError

logger = logging.getLogger("journal_sync.db")

MEMORY_DB: str = ":memory:"


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Open the store database, creating its directory if needed.

    Raises:
        StoreError: If the database cannot be opened or configured
    """
    if db_path != MEMORY_DB:
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)

    try:
        # Autocommit; transactions are issued explicitly
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        for pragma, value in SQLITE_PRAGMAS.items():
            conn.execute(f"PRAGMA {pragma} = {value}")
    except sqlite3.Error as e:
        raise StoreError(f"Cannot open store at {db_path}: {e}", operation="connect") from e

    logger.debug(f"Opened store database {db_path}")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Write transaction; rolled back if the block raises."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def execute_in_transaction(
    conn: sqlite3.Connection,
    operation: Callable[[sqlite3.Connection], Any],
) -> Any:
    """
    Run operation(conn) inside a write transaction and return its result.

    Raises:
        StoreError: If SQLite fails; the transaction is rolled back
    """
    try:
        with transaction(conn) as c:
            return operation(c)
    except sqlite3.Error as e:
        raise StoreError(f"Transaction failed: {e}", operation="transaction") from e


def verify_integrity(conn: sqlite3.Connection) -> bool:
    try:
        row = conn.execute("PRAGMA integrity_check").fetchone()
    except sqlite3.Error as e:
        logger.warning(f"Integrity check could not run: {e}")
        return False
    if row is None or row[0] != "ok":
        logger.warning(f"Integrity check failed: {row[0] if row else 'no result'}")
        return False
    return True
