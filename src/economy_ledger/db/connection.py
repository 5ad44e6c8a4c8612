"""SQLite connections for the ledger.

Connections run in autocommit mode; a write scope opens ``BEGIN IMMEDIATE``
itself so the event append and its projection commit or vanish together, and
so concurrent writers queue on the database lock instead of failing mid-way.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

BUSY_TIMEOUT_MS = 5000


def get_db_path() -> Path:
    from economy_ledger.config import config

    return config.database.absolute_path


def configure_connection(connection: sqlite3.Connection) -> sqlite3.Connection:
    """Name-addressable rows, enforced foreign keys and a busy timeout."""
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    connection.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    return connection


def get_connection() -> sqlite3.Connection:
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return configure_connection(sqlite3.connect(str(db_path), isolation_level=None))


@contextmanager
def connection_scope(*, write: bool = False) -> Iterator[sqlite3.Connection]:
    """
    Yield a configured connection and always close it.

    Args:
        write: Wrap the block in ``BEGIN IMMEDIATE``; commit on success and
            roll back when the block raises.
    """
    connection = get_connection()
    try:
        if not write:
            yield connection
            return
        connection.execute("BEGIN IMMEDIATE")
        try:
            yield connection
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK")
            raise
        connection.execute("COMMIT")
    finally:
        connection.close()
