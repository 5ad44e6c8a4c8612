"""Schema creation and append-only trigger wiring for the SQLite backend.

The schema layer is isolated from ledger/query code so schema changes are
reviewable without wading through unrelated repository logic.

Tables fall into two groups:

- ``events``: the append-only event log. UPDATE and DELETE are rejected by
  triggers, so history can only grow.
- Aggregates (``users``, ``credit_balances``, ``cards``, ``codex_unlocks``,
  ``listings``, ``trades``, ``trivia_attempts``): the materialized current
  state, written only through event projection.
"""

from __future__ import annotations

import sqlite3

from economy_ledger.db.connection import get_connection
from economy_ledger.db.constants import (
    CARD_FINISHES,
    CARD_RARITIES,
    CODEX_VARIANTS,
    SERVER_SCOPE,
    TRADE_STATUSES,
)

# Hot-path index rationale:
# 1. rollback and timeline scans filter one user's events by timestamp.
# 2. backfill existence checks and undo lookups filter by kind/correlation.
# 3. wipes and snapshots gather a user's cards, listings and trades.
HOT_PATH_INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_events_user_timestamp ON events(user_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_events_kind_timestamp ON events(kind, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_events_correlation ON events(correlation_id)",
    "CREATE INDEX IF NOT EXISTS idx_cards_user_id ON cards(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_seller ON listings(seller_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_trades_initiator ON trades(initiator_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_trades_counterparty ON trades(counterparty_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_trivia_attempts_user ON trivia_attempts(user_id)",
)


def _in_list(values: tuple[str, ...]) -> str:
    """Render a SQL ``IN (...)`` literal list for CHECK constraints."""
    return ", ".join(f"'{value}'" for value in values)


def create_event_log_triggers(cursor: sqlite3.Cursor) -> None:
    """Install triggers that make the ``events`` table append-only."""
    cursor.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_events_no_update
        BEFORE UPDATE ON events
        BEGIN
            SELECT RAISE(ABORT, 'events are append-only');
        END
    """)
    cursor.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_events_no_delete
        BEFORE DELETE ON events
        BEGIN
            SELECT RAISE(ABORT, 'events are append-only');
        END
    """)


def init_database() -> None:
    """Initialize the SQLite database schema, indexes and triggers.

    Safe to call repeatedly; every statement is ``IF NOT EXISTS``.
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("BEGIN")

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY CHECK (user_id <> '{SERVER_SCOPE}'),
                display_name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                user_seq INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                correlation_id TEXT,
                origin TEXT NOT NULL DEFAULT 'gameplay',
                recorded_at TEXT NOT NULL,
                UNIQUE(user_id, user_seq)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS credit_balances (
                user_id TEXT PRIMARY KEY REFERENCES users(user_id),
                balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS cards (
                card_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(user_id),
                character_id TEXT NOT NULL,
                rarity TEXT NOT NULL CHECK (rarity IN ({_in_list(CARD_RARITIES)})),
                finish TEXT NOT NULL DEFAULT 'normal'
                    CHECK (finish IN ({_in_list(CARD_FINISHES)})),
                character_name TEXT NOT NULL DEFAULT '',
                actor_name TEXT NOT NULL DEFAULT '',
                movie_title TEXT NOT NULL DEFAULT '',
                acquired_at TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS codex_unlocks (
                user_id TEXT NOT NULL REFERENCES users(user_id),
                character_id TEXT NOT NULL,
                variant TEXT NOT NULL CHECK (variant IN ({_in_list(CODEX_VARIANTS)})),
                unlocked_at TEXT NOT NULL,
                PRIMARY KEY (user_id, character_id, variant)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS listings (
                listing_id TEXT PRIMARY KEY,
                card_id TEXT NOT NULL UNIQUE REFERENCES cards(card_id),
                seller_user_id TEXT NOT NULL REFERENCES users(user_id),
                asking_price INTEGER NOT NULL CHECK (asking_price > 0),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS trades (
                trade_id TEXT PRIMARY KEY,
                initiator_user_id TEXT NOT NULL REFERENCES users(user_id),
                counterparty_user_id TEXT NOT NULL REFERENCES users(user_id),
                offered_card_ids TEXT NOT NULL DEFAULT '[]',
                requested_card_ids TEXT NOT NULL DEFAULT '[]',
                offered_credits INTEGER NOT NULL DEFAULT 0 CHECK (offered_credits >= 0),
                requested_credits INTEGER NOT NULL DEFAULT 0 CHECK (requested_credits >= 0),
                status TEXT NOT NULL CHECK (status IN ({_in_list(TRADE_STATUSES)})),
                source TEXT NOT NULL DEFAULT 'trade',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK (initiator_user_id <> counterparty_user_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS trivia_attempts (
                attempt_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(user_id),
                winner_id TEXT,
                score INTEGER NOT NULL DEFAULT 0,
                credits_earned INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT NOT NULL
            )
        """)

        for statement in HOT_PATH_INDEX_STATEMENTS:
            cursor.execute(statement)

        create_event_log_triggers(cursor)
        cursor.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()
