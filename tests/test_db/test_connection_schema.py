"""Connection pragmas, schema creation and the append-only event log."""

import sqlite3

import pytest

from economy_ledger.db.connection import connection_scope, get_connection
from economy_ledger.db.schema import init_database

EXPECTED_TABLES = {
    "users",
    "events",
    "credit_balances",
    "cards",
    "codex_unlocks",
    "listings",
    "trades",
    "trivia_attempts",
}


def _insert_event(conn: sqlite3.Connection, user_id: str = "alice") -> int:
    cursor = conn.execute(
        """
        INSERT INTO events (user_id, user_seq, timestamp, kind, payload, origin, recorded_at)
        VALUES (?, 1, '2024-01-01T00:00:00.000000Z', 'CreditDelta', '{}', 'gameplay',
                '2024-01-01T00:00:00.000000Z')
        """,
        (user_id,),
    )
    return int(cursor.lastrowid)


@pytest.mark.unit
@pytest.mark.db
def test_connection_enables_foreign_keys(temp_db_path):
    conn = get_connection()
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert isinstance(conn.execute("SELECT 1 AS one").fetchone(), sqlite3.Row)
    finally:
        conn.close()


@pytest.mark.unit
@pytest.mark.db
def test_init_database_creates_tables_and_is_idempotent(temp_db_path):
    init_database()
    init_database()

    with connection_scope() as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    assert EXPECTED_TABLES <= {row[0] for row in rows}


@pytest.mark.unit
@pytest.mark.db
def test_events_reject_update_and_delete(test_db):
    """History can only grow."""
    with connection_scope(write=True) as conn:
        event_id = _insert_event(conn)

    with connection_scope() as conn:
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("UPDATE events SET payload = '{\"x\": 1}' WHERE id = ?", (event_id,))
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        assert conn.execute("SELECT COUNT(*) FROM events").fetchone()[0] == 1


@pytest.mark.unit
@pytest.mark.db
def test_user_seq_is_unique_per_user(test_db):
    with connection_scope(write=True) as conn:
        _insert_event(conn, "alice")
        _insert_event(conn, "bob")
    with connection_scope(write=True) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            _insert_event(conn, "alice")


@pytest.mark.unit
@pytest.mark.db
def test_server_scope_id_cannot_be_registered(test_db):
    with connection_scope(write=True) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO users (user_id, display_name, created_at) VALUES ('server', 's', 'x')"
            )


@pytest.mark.unit
@pytest.mark.db
def test_write_scope_rolls_back_on_error(test_db):
    with pytest.raises(RuntimeError):
        with connection_scope(write=True) as conn:
            _insert_event(conn)
            raise RuntimeError("abort")

    with connection_scope() as conn:
        assert conn.execute("SELECT COUNT(*) FROM events").fetchone()[0] == 0


@pytest.mark.unit
@pytest.mark.db
def test_balance_cannot_go_negative(test_db):
    with connection_scope(write=True) as conn:
        conn.execute(
            "INSERT INTO users (user_id, display_name, created_at) VALUES ('alice', 'A', 'x')"
        )
    with connection_scope(write=True) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO credit_balances (user_id, balance, updated_at) "
                "VALUES ('alice', -1, 'x')"
            )
