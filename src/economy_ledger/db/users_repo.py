"""User registry operations for the SQLite backend.

Users are never removed by ledger operations; wipes clear economic state but
keep the account row.
"""

from __future__ import annotations

import sqlite3

from economy_ledger.db.connection import connection_scope
from economy_ledger.db.errors import raise_read_error


def insert_user(cursor: sqlite3.Cursor, user_id: str, display_name: str, created_at: str) -> bool:
    """Insert a user row; returns False when the id is already taken."""
    cursor.execute(
        "INSERT OR IGNORE INTO users (user_id, display_name, created_at) VALUES (?, ?, ?)",
        (user_id, display_name, created_at),
    )
    return cursor.rowcount == 1


def exists(cursor: sqlite3.Cursor, user_id: str) -> bool:
    cursor.execute("SELECT 1 FROM users WHERE user_id = ?", (user_id,))
    return cursor.fetchone() is not None


def list_user_ids(cursor: sqlite3.Cursor | None = None) -> list[str]:
    """All registered user ids in sorted order."""
    query = "SELECT user_id FROM users ORDER BY user_id"
    if cursor is not None:
        cursor.execute(query)
        return [row[0] for row in cursor.fetchall()]
    try:
        with connection_scope() as conn:
            rows = conn.execute(query).fetchall()
        return [row[0] for row in rows]
    except Exception as exc:
        raise_read_error("users.list_user_ids", exc)
