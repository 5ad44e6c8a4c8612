"""Ledger core: events, projection, replay and the integrity engines.

Only leaf modules are re-exported here; the services import the database
repositories, which themselves import from ``events`` and ``types``.
"""

from economy_ledger.ledger.errors import (
    ConcurrencyConflict,
    IncompleteHistoryError,
    LedgerError,
    PartialFailure,
    UnknownUserError,
    ValidationError,
)
from economy_ledger.ledger.events import Event, EventKind, EventOrigin, NewEvent
from economy_ledger.ledger.types import (
    BackfillResult,
    Card,
    Listing,
    RollbackResult,
    RollbackUndoResult,
    TimelineEntry,
    TradeRecord,
    TriviaAttempt,
    WipeResult,
)

__all__ = [
    "BackfillResult",
    "Card",
    "ConcurrencyConflict",
    "Event",
    "EventKind",
    "EventOrigin",
    "IncompleteHistoryError",
    "LedgerError",
    "Listing",
    "NewEvent",
    "PartialFailure",
    "RollbackResult",
    "RollbackUndoResult",
    "TimelineEntry",
    "TradeRecord",
    "TriviaAttempt",
    "UnknownUserError",
    "ValidationError",
    "WipeResult",
]
