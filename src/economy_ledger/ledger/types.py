"""Data types for the economy ledger.

Two groups live here:

- Resource records (:class:`Card`, :class:`Listing`, :class:`TradeRecord`,
  :class:`TriviaAttempt`) that travel inside event payloads and mirror the
  aggregate rows.
- Result objects returned by the rollback, backfill, wipe and timeline
  operations.

All types are frozen dataclasses except the result accumulators, which the
engines fill in while they work.
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any

# =============================================================================
# RESOURCE RECORDS
# =============================================================================


def _pick(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys of ``data`` that are fields of dataclass ``cls``."""
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


@dataclass(frozen=True)
class Card:
    """
    A single card instance with a stable identity.

    Attributes:
        card_id: Stable instance id; survives trades and rollbacks.
        character_id: Character the card depicts (codex key).
        rarity: ``uncommon``, ``rare``, ``epic`` or ``legendary``.
        finish: ``normal``, ``holo``, ``prismatic`` or ``darkMatter``.
        character_name: Display name of the character.
        actor_name: Display name of the actor.
        movie_title: Display title of the source movie.
        acquired_at: Timestamp string of first acquisition.
    """

    card_id: str
    character_id: str
    rarity: str
    finish: str = "normal"
    character_name: str = ""
    actor_name: str = ""
    movie_title: str = ""
    acquired_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Card:
        return cls(**_pick(cls, data))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Card:
        return cls(**_pick(cls, dict(row)))


@dataclass(frozen=True)
class Listing:
    """A marketplace listing of one card by its owner."""

    listing_id: str
    card_id: str
    seller_user_id: str
    asking_price: int
    created_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Listing:
        return cls(**_pick(cls, data))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Listing:
        return cls(**_pick(cls, dict(row)))


@dataclass(frozen=True)
class TradeRecord:
    """
    An executed two-party exchange.

    The initiator gives ``offered_card_ids`` and ``offered_credits``; the
    counterparty gives ``requested_card_ids`` and ``requested_credits``.
    Marketplace purchases are stored as trades with ``source="marketplace"``.
    """

    trade_id: str
    initiator_user_id: str
    counterparty_user_id: str
    offered_card_ids: tuple[str, ...] = ()
    requested_card_ids: tuple[str, ...] = ()
    offered_credits: int = 0
    requested_credits: int = 0
    source: str = "trade"
    created_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["offered_card_ids"] = list(self.offered_card_ids)
        payload["requested_card_ids"] = list(self.requested_card_ids)
        return payload

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> TradeRecord:
        values = _pick(cls, data)
        values["offered_card_ids"] = tuple(values.get("offered_card_ids", ()))
        values["requested_card_ids"] = tuple(values.get("requested_card_ids", ()))
        return cls(**values)


@dataclass(frozen=True)
class TriviaAttempt:
    """One completed trivia round for a user."""

    attempt_id: str
    user_id: str
    score: int = 0
    credits_earned: int = 0
    winner_id: str | None = None
    completed_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> TriviaAttempt:
        return cls(**_pick(cls, data))


# =============================================================================
# OPERATION RESULTS
# =============================================================================


@dataclass
class RollbackResult:
    """
    Outcome of rolling one user back to a cutover instant.

    ``items_reverted`` counts every correction applied, across all resource
    types. ``skipped`` lists inverses that could not be applied because a
    later event had already made them moot.
    """

    user_id: str
    cutover: datetime
    rollback_id: str = ""
    new_balance: int = 0
    balance_delta: int = 0
    cards_removed: int = 0
    cards_restored: int = 0
    codex_unlocks_removed: int = 0
    codex_unlocks_restored: int = 0
    trades_reversed: int = 0
    listings_removed: int = 0
    listings_restored: int = 0
    trivia_attempts_removed: int = 0
    trivia_attempts_restored: int = 0
    events_reverted: int = 0
    skipped: list[str] = field(default_factory=list)
    assumed_resources: list[str] = field(default_factory=list)

    @property
    def items_reverted(self) -> int:
        return (
            self.cards_removed
            + self.cards_restored
            + self.codex_unlocks_removed
            + self.codex_unlocks_restored
            + self.trades_reversed
            + self.listings_removed
            + self.listings_restored
            + self.trivia_attempts_removed
            + self.trivia_attempts_restored
        )

    def counts(self) -> dict[str, int]:
        return {
            "cards_removed": self.cards_removed,
            "cards_restored": self.cards_restored,
            "codex_unlocks_removed": self.codex_unlocks_removed,
            "codex_unlocks_restored": self.codex_unlocks_restored,
            "trades_reversed": self.trades_reversed,
            "listings_removed": self.listings_removed,
            "listings_restored": self.listings_restored,
            "trivia_attempts_removed": self.trivia_attempts_removed,
            "trivia_attempts_restored": self.trivia_attempts_restored,
        }

    def message(self, label: str) -> str:
        """Operator-facing summary, e.g. ``Rolled back to 2024-01-04. Credits: 700, ...``."""
        parts = [
            f"Credits: {self.new_balance}",
            f"{self.cards_removed} card(s) removed",
            f"{self.cards_restored} card(s) restored",
            f"{self.codex_unlocks_removed} codex unlock(s) removed",
            f"{self.trades_reversed} trade(s) reversed",
            f"{self.listings_removed} listing(s) removed",
            f"{self.trivia_attempts_removed} trivia attempt(s) removed",
            f"{self.events_reverted} event(s) reverted",
        ]
        return f"Rolled back to {label}. {', '.join(parts)}."


@dataclass(frozen=True)
class RollbackUndoResult:
    """Outcome of undoing a user's most recent rollback."""

    user_id: str
    rollback_id: str
    new_balance: int
    events_reverted: int
    skipped: tuple[str, ...] = ()


@dataclass(frozen=True)
class BackfillResult:
    """Outcome of a backfill run."""

    entries_added: int
    day: date
    user_id: str | None
    users_processed: int
    target: str = "codex"

    @property
    def message(self) -> str:
        scope = f"for user {self.user_id}" if self.user_id else "for all users"
        noun = "codex log" if self.target == "codex" else "inventory baseline"
        return (
            f"Backfilled {self.entries_added} {noun} entries with date "
            f"{self.day.isoformat()} {scope}"
        )


@dataclass
class WipeResult:
    """Exact counts of aggregate rows removed by a wipe."""

    scope: str
    user_id: str | None = None
    cards_removed: int = 0
    listings_removed: int = 0
    trades_removed: int = 0
    trivia_attempts_removed: int = 0
    credits_cleared: int = 0
    users_processed: int = 0

    def absorb(self, other: WipeResult) -> None:
        """Add another user's counts into this (server-wide) result."""
        self.cards_removed += other.cards_removed
        self.listings_removed += other.listings_removed
        self.trades_removed += other.trades_removed
        self.trivia_attempts_removed += other.trivia_attempts_removed
        self.credits_cleared += other.credits_cleared
        self.users_processed += other.users_processed

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TimelineEntry:
    """One economically significant acquisition, denormalized for display."""

    event_id: int
    timestamp: str
    user_id: str
    user_name: str
    source: str
    card_id: str
    character_id: str
    character_name: str
    actor_name: str
    movie_title: str
    rarity: str
    finish: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
