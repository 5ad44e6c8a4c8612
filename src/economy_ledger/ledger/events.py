"""
Event model for the economy ledger.

=============================================================================
PRINCIPLES
=============================================================================

1. EVENTS RECORD FACTS
   - Every kind is past tense: ``CardAdded`` means the card was added.
   - Corrections (rollback, wipe) are new facts, never edits of old ones.

2. EVENTS ARE IMMUTABLE
   - :class:`Event` is frozen and the ``events`` table is append-only.

3. ORDER COMES FROM THE LOG, NOT THE CLOCK
   - ``id`` is the global total order used for replay.
   - ``user_seq`` is the per-user sequence; it orders a user's events the
     same way ``id`` does.
   - ``timestamp`` is wall-clock time used for cutover selection and display.

=============================================================================
USAGE
=============================================================================

    from economy_ledger.ledger.events import EventKind, NewEvent

    tx.append(NewEvent(
        user_id="u-1",
        kind=EventKind.CREDIT_DELTA,
        payload={"amount": 200, "reason": "quest_reward", "metadata": {}},
    ))

=============================================================================
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

# =============================================================================
# KINDS AND ORIGINS
# =============================================================================


class EventKind(str, Enum):
    """Tagged variants of ledger events."""

    CREDIT_DELTA = "CreditDelta"
    CARD_ADDED = "CardAdded"
    CARD_REMOVED = "CardRemoved"
    CODEX_UNLOCKED = "CodexUnlocked"
    CODEX_LOCKED = "CodexLocked"
    TRADE_EXECUTED = "TradeExecuted"
    TRADE_REVERSED = "TradeReversed"
    LISTING_CREATED = "ListingCreated"
    LISTING_REMOVED = "ListingRemoved"
    TRIVIA_ATTEMPT_RECORDED = "TriviaAttemptRecorded"
    TRIVIA_ATTEMPT_REMOVED = "TriviaAttemptRemoved"
    ROLLBACK_APPLIED = "RollbackApplied"
    ROLLBACK_UNDONE = "RollbackUndone"
    WIPE_APPLIED = "WipeApplied"


class EventOrigin(str, Enum):
    """Who produced an event."""

    GAMEPLAY = "gameplay"
    ADMIN = "admin"
    BACKFILL = "backfill"
    ROLLBACK = "rollback"
    ROLLBACK_UNDO = "rollback_undo"
    WIPE = "wipe"


# Kinds that only record that something happened and change no aggregate.
AUDIT_KINDS = frozenset({EventKind.ROLLBACK_APPLIED, EventKind.ROLLBACK_UNDONE})

TRADE_KINDS = frozenset({EventKind.TRADE_EXECUTED, EventKind.TRADE_REVERSED})


# =============================================================================
# TIMESTAMPS
# =============================================================================

# Fixed-width UTC format so that string comparison in SQL orders instants.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Render an instant in the log's fixed-width UTC format."""
    return as_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp (or any ISO-8601 string) into aware UTC."""
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def start_of_day(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=UTC)


def as_instant(value: date | datetime) -> datetime:
    """Interpret a date as the start of that UTC day; pass datetimes through."""
    if isinstance(value, datetime):
        return as_utc(value)
    return start_of_day(value)


# =============================================================================
# EVENT RECORDS
# =============================================================================


@dataclass(frozen=True)
class NewEvent:
    """
    An event that has not been appended yet.

    Attributes:
        user_id: Subject user, or ``SERVER_SCOPE`` for server-wide audit.
        kind: Event variant.
        payload: Kind-specific data, JSON-serializable.
        timestamp: Instant of the change; ``None`` means "now" at append.
        origin: Producer of the event.
        correlation_id: Shared id for dual-written trades or grouped
            corrections.
    """

    user_id: str
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    origin: EventOrigin = EventOrigin.GAMEPLAY
    correlation_id: str | None = None


@dataclass(frozen=True)
class Event:
    """
    An appended, immutable ledger event.

    Attributes:
        id: Global append order; the replay order.
        user_id: Subject user or ``SERVER_SCOPE``.
        user_seq: 1-based position in the subject's own history.
        timestamp: Instant of the change (UTC).
        kind: Event variant.
        payload: Kind-specific data sufficient to replay and invert.
        origin: Producer of the event.
        correlation_id: Shared trade id or correction group id.
    """

    id: int
    user_id: str
    user_seq: int
    timestamp: datetime
    kind: EventKind
    payload: dict[str, Any]
    origin: EventOrigin
    correlation_id: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Event:
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            user_seq=int(row["user_seq"]),
            timestamp=parse_timestamp(row["timestamp"]),
            kind=EventKind(row["kind"]),
            payload=json.loads(row["payload"]),
            origin=EventOrigin(row["origin"]),
            correlation_id=row["correlation_id"],
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for API responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_seq": self.user_seq,
            "timestamp": format_timestamp(self.timestamp),
            "kind": self.kind.value,
            "payload": self.payload,
            "origin": self.origin.value,
            "correlation_id": self.correlation_id,
        }
