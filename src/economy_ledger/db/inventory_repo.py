"""Card inventory and codex unlock aggregate operations."""

from __future__ import annotations

import sqlite3

from economy_ledger.ledger.types import Card

_CARD_COLUMNS = (
    "card_id, character_id, rarity, finish, character_name, actor_name, movie_title, acquired_at"
)

# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def put_card(cursor: sqlite3.Cursor, user_id: str, card: Card) -> None:
    """Insert a card for ``user_id``, or move an existing instance to them.

    The upsert keeps card identity stable across trades: both sides of a
    trade can be projected in either order.
    """
    cursor.execute(
        f"""
        INSERT INTO cards (user_id, {_CARD_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(card_id) DO UPDATE SET user_id = excluded.user_id
        """,
        (
            user_id,
            card.card_id,
            card.character_id,
            card.rarity,
            card.finish,
            card.character_name,
            card.actor_name,
            card.movie_title,
            card.acquired_at,
        ),
    )


def delete_card(cursor: sqlite3.Cursor, card_id: str, *, owner: str | None = None) -> bool:
    """Delete a card; with ``owner`` only while that user still holds it."""
    if owner is None:
        cursor.execute("DELETE FROM cards WHERE card_id = ?", (card_id,))
    else:
        cursor.execute("DELETE FROM cards WHERE card_id = ? AND user_id = ?", (card_id, owner))
    return cursor.rowcount > 0


def get_card(cursor: sqlite3.Cursor, card_id: str) -> Card | None:
    cursor.execute(f"SELECT {_CARD_COLUMNS} FROM cards WHERE card_id = ?", (card_id,))
    row = cursor.fetchone()
    return Card.from_row(row) if row else None


def get_card_owner(cursor: sqlite3.Cursor, card_id: str) -> str | None:
    cursor.execute("SELECT user_id FROM cards WHERE card_id = ?", (card_id,))
    row = cursor.fetchone()
    return row[0] if row else None


def list_cards(cursor: sqlite3.Cursor, user_id: str) -> list[Card]:
    """A user's cards, oldest acquisition first."""
    cursor.execute(
        f"SELECT {_CARD_COLUMNS} FROM cards WHERE user_id = ? ORDER BY acquired_at, card_id",
        (user_id,),
    )
    return [Card.from_row(row) for row in cursor.fetchall()]


# ---------------------------------------------------------------------------
# Codex
# ---------------------------------------------------------------------------


def insert_codex(
    cursor: sqlite3.Cursor, user_id: str, character_id: str, variant: str, unlocked_at: str
) -> bool:
    """Record an unlock; returns False if it was already present."""
    cursor.execute(
        """
        INSERT OR IGNORE INTO codex_unlocks (user_id, character_id, variant, unlocked_at)
        VALUES (?, ?, ?, ?)
        """,
        (user_id, character_id, variant, unlocked_at),
    )
    return cursor.rowcount == 1


def delete_codex(cursor: sqlite3.Cursor, user_id: str, character_id: str, variant: str) -> bool:
    cursor.execute(
        "DELETE FROM codex_unlocks WHERE user_id = ? AND character_id = ? AND variant = ?",
        (user_id, character_id, variant),
    )
    return cursor.rowcount > 0


def has_codex(cursor: sqlite3.Cursor, user_id: str, character_id: str, variant: str) -> bool:
    cursor.execute(
        "SELECT 1 FROM codex_unlocks WHERE user_id = ? AND character_id = ? AND variant = ?",
        (user_id, character_id, variant),
    )
    return cursor.fetchone() is not None


def list_codex(cursor: sqlite3.Cursor, user_id: str) -> list[tuple[str, str]]:
    """A user's unlocked (character_id, variant) pairs in sorted order."""
    cursor.execute(
        """
        SELECT character_id, variant
        FROM codex_unlocks
        WHERE user_id = ?
        ORDER BY character_id, variant
        """,
        (user_id,),
    )
    return [(row[0], row[1]) for row in cursor.fetchall()]
