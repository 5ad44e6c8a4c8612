"""Credit balance aggregate operations."""

from __future__ import annotations

import sqlite3


def get_balance(cursor: sqlite3.Cursor, user_id: str) -> int:
    """Current balance; users without a row hold zero."""
    cursor.execute("SELECT balance FROM credit_balances WHERE user_id = ?", (user_id,))
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def set_balance(cursor: sqlite3.Cursor, user_id: str, balance: int, updated_at: str) -> None:
    """Upsert a balance. The CHECK constraint rejects negative values."""
    cursor.execute(
        """
        INSERT INTO credit_balances (user_id, balance, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            balance = excluded.balance,
            updated_at = excluded.updated_at
        """,
        (user_id, balance, updated_at),
    )


def add_to_balance(cursor: sqlite3.Cursor, user_id: str, amount: int, updated_at: str) -> int:
    """Apply a signed delta and return the new balance."""
    new_balance = get_balance(cursor, user_id) + amount
    set_balance(cursor, user_id, new_balance, updated_at)
    return new_balance
