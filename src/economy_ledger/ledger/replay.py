"""Replay a user's history and compare it with the live aggregates.

Folding every event of a user in ``id`` order must reproduce that user's
aggregate snapshot exactly. This module provides the fold, the snapshot, and
the comparison used by:

- the ``verify`` admin route and CLI command,
- the rollback engine, which refuses (or explicitly assumes) state that the
  history cannot explain,
- the inventory backfill, which stamps events for exactly that state.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field

from economy_ledger.db import credits_repo, events_repo, inventory_repo, market_repo, trivia_repo
from economy_ledger.ledger.events import Event, EventKind


@dataclass
class UserState:
    """Comparable view of one user's economic state."""

    balance: int = 0
    cards: set[str] = field(default_factory=set)
    codex: set[tuple[str, str]] = field(default_factory=set)
    listings: set[str] = field(default_factory=set)
    trivia_attempts: set[str] = field(default_factory=set)
    trades: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplayReport:
    """Result of comparing replayed history with the live aggregates."""

    user_id: str
    event_count: int
    unexplained: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.unexplained and not self.missing

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "consistent": self.consistent,
            "event_count": self.event_count,
            "unexplained": list(self.unexplained),
            "missing": list(self.missing),
        }


def _fold_one(state: UserState, event: Event) -> None:
    payload = event.payload
    kind = event.kind
    if kind is EventKind.CREDIT_DELTA:
        state.balance += int(payload["amount"])
    elif kind is EventKind.CARD_ADDED:
        state.cards.add(payload["card"]["card_id"])
    elif kind is EventKind.CARD_REMOVED:
        state.cards.discard(payload["card"]["card_id"])
    elif kind is EventKind.CODEX_UNLOCKED:
        state.codex.add((payload["character_id"], payload["variant"]))
    elif kind is EventKind.CODEX_LOCKED:
        state.codex.discard((payload["character_id"], payload["variant"]))
    elif kind in (EventKind.TRADE_EXECUTED, EventKind.TRADE_REVERSED):
        for card in payload.get("cards_out", []):
            state.cards.discard(card["card_id"])
        for card in payload.get("cards_in", []):
            state.cards.add(card["card_id"])
        state.balance += int(payload.get("credits_in", 0)) - int(payload.get("credits_out", 0))
        status = "executed" if kind is EventKind.TRADE_EXECUTED else "reversed"
        state.trades[payload["trade_id"]] = status
    elif kind is EventKind.LISTING_CREATED:
        state.listings.add(payload["listing"]["listing_id"])
    elif kind is EventKind.LISTING_REMOVED:
        state.listings.discard(payload["listing"]["listing_id"])
    elif kind is EventKind.TRIVIA_ATTEMPT_RECORDED:
        state.trivia_attempts.add(payload["attempt"]["attempt_id"])
    elif kind is EventKind.TRIVIA_ATTEMPT_REMOVED:
        state.trivia_attempts.discard(payload["attempt"]["attempt_id"])
    elif kind is EventKind.WIPE_APPLIED:
        state.cards.difference_update(payload.get("card_ids", []))
        state.listings.difference_update(payload.get("listing_ids", []))
        state.trivia_attempts.difference_update(payload.get("trivia_attempt_ids", []))
        state.codex.difference_update(tuple(pair) for pair in payload.get("codex", []))
        for trade_id in payload.get("trade_ids", []):
            state.trades.pop(trade_id, None)
        if payload.get("reset_credits"):
            state.balance = 0


def fold(events: Iterable[Event]) -> UserState:
    """Fold events (already in id order) into a :class:`UserState`."""
    state = UserState()
    for event in events:
        _fold_one(state, event)
    return state


def snapshot(cursor: sqlite3.Cursor, user_id: str) -> UserState:
    """Read the live aggregates of a user into a :class:`UserState`."""
    return UserState(
        balance=credits_repo.get_balance(cursor, user_id),
        cards={card.card_id for card in inventory_repo.list_cards(cursor, user_id)},
        codex=set(inventory_repo.list_codex(cursor, user_id)),
        listings={listing.listing_id for listing in market_repo.list_listings(cursor, user_id)},
        trivia_attempts=set(trivia_repo.list_attempt_ids(cursor, user_id)),
        trades={
            row["trade_id"]: row["status"] for row in market_repo.trades_for_user(cursor, user_id)
        },
    )


def unexplained_resources(replayed: UserState, live: UserState) -> list[str]:
    """Resources held live that the history does not account for."""
    found = [f"card:{card_id}" for card_id in sorted(live.cards - replayed.cards)]
    found += [f"codex:{char}/{variant}" for char, variant in sorted(live.codex - replayed.codex)]
    found += [f"listing:{lid}" for lid in sorted(live.listings - replayed.listings)]
    found += [f"trivia:{aid}" for aid in sorted(live.trivia_attempts - replayed.trivia_attempts)]
    found += [
        f"trade:{trade_id}"
        for trade_id, status in sorted(live.trades.items())
        if replayed.trades.get(trade_id) != status
    ]
    if live.balance != replayed.balance:
        found.append(f"credits:live={live.balance},logged={replayed.balance}")
    return found


def missing_resources(replayed: UserState, live: UserState) -> list[str]:
    """Resources the history says are held but the aggregates lack."""
    found = [f"card:{card_id}" for card_id in sorted(replayed.cards - live.cards)]
    found += [f"codex:{char}/{variant}" for char, variant in sorted(replayed.codex - live.codex)]
    found += [f"listing:{lid}" for lid in sorted(replayed.listings - live.listings)]
    found += [f"trivia:{aid}" for aid in sorted(replayed.trivia_attempts - live.trivia_attempts)]
    found += [f"trade:{trade_id}" for trade_id in sorted(set(replayed.trades) - set(live.trades))]
    return found


def verify_user(cursor: sqlite3.Cursor, user_id: str) -> ReplayReport:
    """Replay one user's history and compare it with the live snapshot."""
    events = events_repo.fetch_user_events(cursor, user_id)
    replayed = fold(events)
    live = snapshot(cursor, user_id)
    return ReplayReport(
        user_id=user_id,
        event_count=len(events),
        unexplained=tuple(unexplained_resources(replayed, live)),
        missing=tuple(missing_resources(replayed, live)),
    )
