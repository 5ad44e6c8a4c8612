"""
Event log and aggregate store.

The store is the single write path into the database:

1. A caller opens :meth:`LedgerStore.transaction` (``BEGIN IMMEDIATE``).
2. Each :meth:`LedgerTransaction.append` validates the timestamp against the
   subject's history, assigns the next per-user sequence number, inserts the
   event row and projects it onto the aggregate tables on the same cursor.
3. The transaction commits on success and rolls back on any exception, so an
   event never exists without its aggregate effect or vice versa.

Reads of history go through :meth:`LedgerStore.query`, a lazy, restartable
sequence paged by keyset in ``id`` order.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta

from economy_ledger.db import events_repo
from economy_ledger.db.connection import connection_scope
from economy_ledger.db.errors import raise_write_error
from economy_ledger.ledger.errors import ValidationError
from economy_ledger.ledger.events import (
    Event,
    NewEvent,
    as_instant,
    as_utc,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from economy_ledger.ledger.projection import apply_event

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class EventQuery:
    """
    Lazy, finite, restartable sequence of events in ``id`` order.

    Each iteration starts from the beginning and stops at the highest id that
    existed when that iteration began, so events appended meanwhile are left
    for the next pass.
    """

    def __init__(
        self,
        user_id: str | None,
        *,
        from_time: date | datetime | None = None,
        to_time: date | datetime | None = None,
        page_size: int = 500,
    ) -> None:
        self.user_id = user_id
        self.from_ts = format_timestamp(as_instant(from_time)) if from_time is not None else None
        self.to_ts = format_timestamp(as_instant(to_time)) if to_time is not None else None
        self.page_size = page_size

    def __iter__(self) -> Iterator[Event]:
        until_id = events_repo.max_event_id()
        after_id = 0
        while True:
            page = events_repo.fetch_page(
                self.user_id,
                after_id=after_id,
                until_id=until_id,
                from_ts=self.from_ts,
                to_ts=self.to_ts,
                limit=self.page_size,
            )
            yield from page
            if len(page) < self.page_size:
                return
            after_id = page[-1].id


class LedgerTransaction:
    """Append events and project them inside one open SQLite transaction."""

    def __init__(self, cursor: sqlite3.Cursor, *, clock: Clock, clock_skew: float) -> None:
        self.cursor = cursor
        self.appended: list[Event] = []
        self._clock = clock
        self._skew = timedelta(seconds=clock_skew)

    def now(self) -> datetime:
        return as_utc(self._clock())

    def append(
        self,
        new_event: NewEvent,
        *,
        enforce_monotonic: bool = True,
        project: bool = True,
    ) -> Event:
        """
        Append one event and (by default) apply it to the aggregates.

        Args:
            new_event: Event to append; a missing timestamp means "now".
            enforce_monotonic: Reject timestamps earlier than the subject's
                latest event by more than the clock-skew tolerance. Backfill
                turns this off for explicitly backdated baseline events.
            project: Apply the aggregate effect. Backfill turns this off
                because it records state that already exists.

        Raises:
            ValidationError: Non-monotonic timestamp.
        """
        timestamp = as_utc(new_event.timestamp) if new_event.timestamp else self.now()

        if enforce_monotonic:
            last = events_repo.get_last_timestamp(self.cursor, new_event.user_id)
            if last is not None and timestamp < parse_timestamp(last) - self._skew:
                raise ValidationError(
                    f"Timestamp {format_timestamp(timestamp)} for {new_event.user_id!r} precedes "
                    f"the latest event ({last}) by more than "
                    f"{self._skew.total_seconds():g}s"
                )

        user_seq = events_repo.next_user_seq(self.cursor, new_event.user_id)
        event_id = events_repo.insert_event(
            self.cursor,
            user_id=new_event.user_id,
            user_seq=user_seq,
            timestamp=format_timestamp(timestamp),
            kind=new_event.kind.value,
            payload=json.dumps(new_event.payload, sort_keys=True),
            correlation_id=new_event.correlation_id,
            origin=new_event.origin.value,
            recorded_at=format_timestamp(self.now()),
        )
        event = Event(
            id=event_id,
            user_id=new_event.user_id,
            user_seq=user_seq,
            timestamp=timestamp,
            kind=new_event.kind,
            payload=new_event.payload,
            origin=new_event.origin,
            correlation_id=new_event.correlation_id,
        )
        if project:
            apply_event(self.cursor, event)
        self.appended.append(event)
        return event


class LedgerStore:
    """Entry point for transactional appends and history queries."""

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        clock_skew_seconds: float = 5.0,
        page_size: int = 500,
    ) -> None:
        self.clock = clock
        self.clock_skew_seconds = clock_skew_seconds
        self.page_size = page_size

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        """Open a write transaction; SQLite failures surface as ``DatabaseWriteError``."""
        try:
            with connection_scope(write=True) as conn:
                yield LedgerTransaction(
                    conn.cursor(), clock=self.clock, clock_skew=self.clock_skew_seconds
                )
        except sqlite3.Error as exc:
            raise_write_error("ledger.transaction", exc)

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Cursor]:
        """Read-only cursor for snapshot queries outside a write transaction."""
        with connection_scope() as conn:
            yield conn.cursor()

    def append(self, new_event: NewEvent) -> int:
        """Append a single event in its own transaction and return its id."""
        with self.transaction() as tx:
            return tx.append(new_event).id

    def query(
        self,
        user_id: str | None,
        from_time: date | datetime | None = None,
        to_time: date | datetime | None = None,
    ) -> EventQuery:
        """History of one user (or everyone when ``user_id`` is None) in id order."""
        return EventQuery(
            user_id, from_time=from_time, to_time=to_time, page_size=self.page_size
        )
