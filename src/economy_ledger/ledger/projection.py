"""Project events onto the aggregate tables.

:func:`apply_event` is the only code path that writes aggregate rows. The
ledger store calls it on the same cursor, right after inserting the event
row, so an event and its aggregate effect commit or roll back together.

:mod:`economy_ledger.ledger.replay` folds the same payloads in memory; the
two must agree for the replay-consistency check to hold.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from economy_ledger.db import credits_repo, inventory_repo, market_repo, trivia_repo
from economy_ledger.db.constants import SERVER_SCOPE
from economy_ledger.ledger.events import Event, EventKind, format_timestamp
from economy_ledger.ledger.types import Card, Listing, TradeRecord, TriviaAttempt

Projector = Callable[[sqlite3.Cursor, Event], None]


def _credit_delta(cursor: sqlite3.Cursor, event: Event) -> None:
    credits_repo.add_to_balance(
        cursor, event.user_id, int(event.payload["amount"]), format_timestamp(event.timestamp)
    )


def _card_added(cursor: sqlite3.Cursor, event: Event) -> None:
    inventory_repo.put_card(cursor, event.user_id, Card.from_payload(event.payload["card"]))


def _card_removed(cursor: sqlite3.Cursor, event: Event) -> None:
    inventory_repo.delete_card(cursor, event.payload["card"]["card_id"], owner=event.user_id)


def _codex_unlocked(cursor: sqlite3.Cursor, event: Event) -> None:
    inventory_repo.insert_codex(
        cursor,
        event.user_id,
        event.payload["character_id"],
        event.payload["variant"],
        format_timestamp(event.timestamp),
    )


def _codex_locked(cursor: sqlite3.Cursor, event: Event) -> None:
    inventory_repo.delete_codex(
        cursor, event.user_id, event.payload["character_id"], event.payload["variant"]
    )


def _trade_side(cursor: sqlite3.Cursor, event: Event) -> None:
    """Apply one participant's side of a trade execution or reversal."""
    payload = event.payload
    for card in payload.get("cards_out", []):
        inventory_repo.delete_card(cursor, card["card_id"], owner=event.user_id)
    for card in payload.get("cards_in", []):
        inventory_repo.put_card(cursor, event.user_id, Card.from_payload(card))

    net = int(payload.get("credits_in", 0)) - int(payload.get("credits_out", 0))
    if net:
        credits_repo.add_to_balance(cursor, event.user_id, net, format_timestamp(event.timestamp))

    status = "executed" if event.kind is EventKind.TRADE_EXECUTED else "reversed"
    market_repo.upsert_trade(
        cursor,
        TradeRecord.from_payload(payload["trade"]),
        status,
        format_timestamp(event.timestamp),
    )


def _listing_created(cursor: sqlite3.Cursor, event: Event) -> None:
    market_repo.insert_listing(cursor, Listing.from_payload(event.payload["listing"]))


def _listing_removed(cursor: sqlite3.Cursor, event: Event) -> None:
    market_repo.delete_listing(cursor, event.payload["listing"]["listing_id"])


def _trivia_recorded(cursor: sqlite3.Cursor, event: Event) -> None:
    trivia_repo.insert_attempt(cursor, TriviaAttempt.from_payload(event.payload["attempt"]))


def _trivia_removed(cursor: sqlite3.Cursor, event: Event) -> None:
    trivia_repo.delete_attempt(cursor, event.payload["attempt"]["attempt_id"])


def _wipe_applied(cursor: sqlite3.Cursor, event: Event) -> None:
    """Delete exactly the rows the wipe event names."""
    if event.user_id == SERVER_SCOPE:
        return
    payload = event.payload
    # Listings reference cards, so they go first.
    for listing_id in payload.get("listing_ids", []):
        market_repo.delete_listing(cursor, listing_id)
    for card_id in payload.get("card_ids", []):
        inventory_repo.delete_card(cursor, card_id, owner=event.user_id)
    for trade_id in payload.get("trade_ids", []):
        market_repo.delete_trade(cursor, trade_id)
    for attempt_id in payload.get("trivia_attempt_ids", []):
        trivia_repo.delete_attempt(cursor, attempt_id)
    for character_id, variant in payload.get("codex", []):
        inventory_repo.delete_codex(cursor, event.user_id, character_id, variant)
    if payload.get("reset_credits"):
        credits_repo.set_balance(cursor, event.user_id, 0, format_timestamp(event.timestamp))


def _audit_only(cursor: sqlite3.Cursor, event: Event) -> None:
    return None


PROJECTORS: dict[EventKind, Projector] = {
    EventKind.CREDIT_DELTA: _credit_delta,
    EventKind.CARD_ADDED: _card_added,
    EventKind.CARD_REMOVED: _card_removed,
    EventKind.CODEX_UNLOCKED: _codex_unlocked,
    EventKind.CODEX_LOCKED: _codex_locked,
    EventKind.TRADE_EXECUTED: _trade_side,
    EventKind.TRADE_REVERSED: _trade_side,
    EventKind.LISTING_CREATED: _listing_created,
    EventKind.LISTING_REMOVED: _listing_removed,
    EventKind.TRIVIA_ATTEMPT_RECORDED: _trivia_recorded,
    EventKind.TRIVIA_ATTEMPT_REMOVED: _trivia_removed,
    EventKind.ROLLBACK_APPLIED: _audit_only,
    EventKind.ROLLBACK_UNDONE: _audit_only,
    EventKind.WIPE_APPLIED: _wipe_applied,
}


def apply_event(cursor: sqlite3.Cursor, event: Event) -> None:
    """Apply one appended event to the aggregates."""
    PROJECTORS[event.kind](cursor, event)
