"""Marketplace listing and trade record aggregate operations."""

from __future__ import annotations

import json
import sqlite3

from economy_ledger.ledger.types import Listing, TradeRecord

_LISTING_COLUMNS = "listing_id, card_id, seller_user_id, asking_price, created_at"

# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def insert_listing(cursor: sqlite3.Cursor, listing: Listing) -> None:
    cursor.execute(
        f"INSERT INTO listings ({_LISTING_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
        (
            listing.listing_id,
            listing.card_id,
            listing.seller_user_id,
            listing.asking_price,
            listing.created_at,
        ),
    )


def delete_listing(cursor: sqlite3.Cursor, listing_id: str) -> bool:
    cursor.execute("DELETE FROM listings WHERE listing_id = ?", (listing_id,))
    return cursor.rowcount > 0


def get_listing(cursor: sqlite3.Cursor, listing_id: str) -> Listing | None:
    cursor.execute(f"SELECT {_LISTING_COLUMNS} FROM listings WHERE listing_id = ?", (listing_id,))
    row = cursor.fetchone()
    return Listing.from_row(row) if row else None


def get_listing_for_card(cursor: sqlite3.Cursor, card_id: str) -> Listing | None:
    cursor.execute(f"SELECT {_LISTING_COLUMNS} FROM listings WHERE card_id = ?", (card_id,))
    row = cursor.fetchone()
    return Listing.from_row(row) if row else None


def list_listings(cursor: sqlite3.Cursor, seller_user_id: str) -> list[Listing]:
    cursor.execute(
        f"SELECT {_LISTING_COLUMNS} FROM listings WHERE seller_user_id = ? ORDER BY created_at",
        (seller_user_id,),
    )
    return [Listing.from_row(row) for row in cursor.fetchall()]


def listings_touching_user(cursor: sqlite3.Cursor, user_id: str) -> list[Listing]:
    """Listings sold by the user or placed on a card the user holds."""
    cursor.execute(
        f"""
        SELECT {_LISTING_COLUMNS}
        FROM listings
        WHERE seller_user_id = ?
           OR card_id IN (SELECT card_id FROM cards WHERE user_id = ?)
        ORDER BY created_at
        """,
        (user_id, user_id),
    )
    return [Listing.from_row(row) for row in cursor.fetchall()]


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


def upsert_trade(cursor: sqlite3.Cursor, trade: TradeRecord, status: str, updated_at: str) -> None:
    """Insert a trade record or update its status."""
    cursor.execute(
        """
        INSERT INTO trades (
            trade_id, initiator_user_id, counterparty_user_id,
            offered_card_ids, requested_card_ids, offered_credits, requested_credits,
            status, source, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(trade_id) DO UPDATE SET
            status = excluded.status,
            updated_at = excluded.updated_at
        """,
        (
            trade.trade_id,
            trade.initiator_user_id,
            trade.counterparty_user_id,
            json.dumps(list(trade.offered_card_ids)),
            json.dumps(list(trade.requested_card_ids)),
            trade.offered_credits,
            trade.requested_credits,
            status,
            trade.source,
            trade.created_at or updated_at,
            updated_at,
        ),
    )


def delete_trade(cursor: sqlite3.Cursor, trade_id: str) -> bool:
    cursor.execute("DELETE FROM trades WHERE trade_id = ?", (trade_id,))
    return cursor.rowcount > 0


def trades_for_user(cursor: sqlite3.Cursor, user_id: str) -> list[sqlite3.Row]:
    """Trade rows where the user is either party."""
    cursor.execute(
        """
        SELECT trade_id, initiator_user_id, counterparty_user_id, status, source
        FROM trades
        WHERE initiator_user_id = ? OR counterparty_user_id = ?
        ORDER BY created_at, trade_id
        """,
        (user_id, user_id),
    )
    return cursor.fetchall()
