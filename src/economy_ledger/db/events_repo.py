"""Event log repository operations for the SQLite backend.

Writes happen only through :func:`insert_event`, called by the ledger store
inside the same transaction that projects the event onto the aggregates.
Reads come in two flavours: cursor-bound helpers used inside a ledger
transaction, and self-contained queries that open their own connection and
wrap failures in :class:`~economy_ledger.db.errors.DatabaseReadError`.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence

from economy_ledger.db.connection import connection_scope
from economy_ledger.db.errors import raise_read_error
from economy_ledger.ledger.events import Event, EventKind

_EVENT_COLUMNS = "id, user_id, user_seq, timestamp, kind, payload, correlation_id, origin"


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


# ---------------------------------------------------------------------------
# Cursor-bound helpers (run inside a ledger transaction)
# ---------------------------------------------------------------------------


def get_last_timestamp(cursor: sqlite3.Cursor, user_id: str) -> str | None:
    """Latest timestamp appended for a user, or None for an empty history."""
    cursor.execute("SELECT MAX(timestamp) FROM events WHERE user_id = ?", (user_id,))
    row = cursor.fetchone()
    return row[0] if row else None


def next_user_seq(cursor: sqlite3.Cursor, user_id: str) -> int:
    """Next per-user sequence number."""
    cursor.execute(
        "SELECT COALESCE(MAX(user_seq), 0) + 1 FROM events WHERE user_id = ?", (user_id,)
    )
    return int(cursor.fetchone()[0])


def insert_event(
    cursor: sqlite3.Cursor,
    *,
    user_id: str,
    user_seq: int,
    timestamp: str,
    kind: str,
    payload: str,
    correlation_id: str | None,
    origin: str,
    recorded_at: str,
) -> int:
    """Insert one event row and return its id."""
    cursor.execute(
        """
        INSERT INTO events (
            user_id, user_seq, timestamp, kind, payload, correlation_id, origin, recorded_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, user_seq, timestamp, kind, payload, correlation_id, origin, recorded_at),
    )
    return int(cursor.lastrowid)


def fetch_user_events(cursor: sqlite3.Cursor, user_id: str) -> list[Event]:
    """Every event of a user in replay (id) order."""
    cursor.execute(
        f"SELECT {_EVENT_COLUMNS} FROM events WHERE user_id = ? ORDER BY id ASC",
        (user_id,),
    )
    return [Event.from_row(row) for row in cursor.fetchall()]


def fetch_user_events_since(cursor: sqlite3.Cursor, user_id: str, since: str) -> list[Event]:
    """A user's events at or after ``since``, most recent first."""
    cursor.execute(
        f"""
        SELECT {_EVENT_COLUMNS}
        FROM events
        WHERE user_id = ? AND timestamp >= ?
        ORDER BY id DESC
        """,
        (user_id, since),
    )
    return [Event.from_row(row) for row in cursor.fetchall()]


def fetch_by_correlation(
    cursor: sqlite3.Cursor, correlation_id: str, *, user_id: str | None = None
) -> list[Event]:
    """Events sharing a correlation id, most recent first."""
    if user_id is None:
        cursor.execute(
            f"SELECT {_EVENT_COLUMNS} FROM events WHERE correlation_id = ? ORDER BY id DESC",
            (correlation_id,),
        )
    else:
        cursor.execute(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM events
            WHERE correlation_id = ? AND user_id = ?
            ORDER BY id DESC
            """,
            (correlation_id, user_id),
        )
    return [Event.from_row(row) for row in cursor.fetchall()]


def get_latest_event(cursor: sqlite3.Cursor, user_id: str) -> Event | None:
    """The most recently appended event of a user."""
    cursor.execute(
        f"SELECT {_EVENT_COLUMNS} FROM events WHERE user_id = ? ORDER BY id DESC LIMIT 1",
        (user_id,),
    )
    row = cursor.fetchone()
    return Event.from_row(row) if row else None


def logged_codex_keys(cursor: sqlite3.Cursor, user_id: str) -> set[tuple[str, str]]:
    """(character_id, variant) pairs that have a ``CodexUnlocked`` event for a user."""
    cursor.execute(
        """
        SELECT json_extract(payload, '$.character_id'), json_extract(payload, '$.variant')
        FROM events
        WHERE user_id = ? AND kind = ?
        """,
        (user_id, EventKind.CODEX_UNLOCKED.value),
    )
    return {(str(row[0]), str(row[1])) for row in cursor.fetchall()}


# ---------------------------------------------------------------------------
# Self-contained reads
# ---------------------------------------------------------------------------


def fetch_page(
    user_id: str | None,
    *,
    after_id: int = 0,
    until_id: int | None = None,
    from_ts: str | None = None,
    to_ts: str | None = None,
    limit: int = 500,
) -> list[Event]:
    """One keyset page of events in id order.

    Args:
        user_id: Subject filter; None pages over every user.
        after_id: Return only events with ``id > after_id``.
        until_id: Return only events with ``id <= until_id``.
        from_ts: Inclusive lower timestamp bound.
        to_ts: Exclusive upper timestamp bound.
        limit: Page size.
    """
    clauses = ["id > ?"]
    params: list[object] = [after_id]
    if until_id is not None:
        clauses.append("id <= ?")
        params.append(until_id)
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if from_ts is not None:
        clauses.append("timestamp >= ?")
        params.append(from_ts)
    if to_ts is not None:
        clauses.append("timestamp < ?")
        params.append(to_ts)
    params.append(limit)
    try:
        with connection_scope() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events
                WHERE {" AND ".join(clauses)}
                ORDER BY id ASC
                LIMIT ?
                """,
                params,
            )
            rows = cursor.fetchall()
        return [Event.from_row(row) for row in rows]
    except Exception as exc:
        raise_read_error(
            "events.fetch_page",
            exc,
            details=f"user_id={user_id!r}, after_id={after_id}",
        )


def fetch_timeline_rows(
    *,
    sources: Sequence[str],
    rarities: Sequence[str],
    user_id: str | None = None,
    since: str | None = None,
    limit: int | None = None,
) -> list[sqlite3.Row]:
    """``CardAdded`` rows matching source/rarity filters, newest first, with user names."""
    clauses = [
        "e.kind = ?",
        f"json_extract(e.payload, '$.source') IN ({_placeholders(sources)})",
        f"json_extract(e.payload, '$.card.rarity') IN ({_placeholders(rarities)})",
    ]
    params: list[object] = [EventKind.CARD_ADDED.value, *sources, *rarities]
    if user_id is not None:
        clauses.append("e.user_id = ?")
        params.append(user_id)
    if since is not None:
        clauses.append("e.timestamp >= ?")
        params.append(since)
    limit_sql = ""
    if limit is not None:
        limit_sql = "LIMIT ?"
        params.append(limit)
    try:
        with connection_scope() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT e.id, e.user_id, e.timestamp, e.payload, u.display_name
                FROM events e
                LEFT JOIN users u ON u.user_id = e.user_id
                WHERE {" AND ".join(clauses)}
                ORDER BY e.timestamp DESC, e.id DESC
                {limit_sql}
                """,
                params,
            )
            return cursor.fetchall()
    except Exception as exc:
        raise_read_error("events.fetch_timeline_rows", exc, details=f"user_id={user_id!r}")


def max_event_id() -> int:
    """Highest event id appended so far (0 for an empty log)."""
    try:
        with connection_scope() as conn:
            row = conn.execute("SELECT COALESCE(MAX(id), 0) FROM events").fetchone()
        return int(row[0])
    except Exception as exc:
        raise_read_error("events.max_event_id", exc)


def count_events(user_id: str | None = None) -> int:
    """Number of events in the log, optionally for one subject."""
    try:
        with connection_scope() as conn:
            cursor = conn.cursor()
            if user_id is None:
                cursor.execute("SELECT COUNT(*) FROM events")
            else:
                cursor.execute("SELECT COUNT(*) FROM events WHERE user_id = ?", (user_id,))
            return int(cursor.fetchone()[0])
    except Exception as exc:
        raise_read_error("events.count_events", exc, details=f"user_id={user_id!r}")
