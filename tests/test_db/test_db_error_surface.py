"""Typed DB error mapping for self-contained repository reads and ledger writes."""

import sqlite3
from unittest.mock import patch

import pytest

from economy_ledger.db import connection as db_connection
from economy_ledger.db import events_repo, users_repo
from economy_ledger.db.errors import (
    DatabaseOperationContext,
    DatabaseReadError,
    DatabaseWriteError,
    raise_read_error,
)
from economy_ledger.ledger.service import LedgerService


@pytest.mark.unit
@pytest.mark.db
def test_repository_reads_raise_typed_errors_on_db_error():
    """Self-contained reads map connection failures to DatabaseReadError."""
    with patch.object(db_connection, "get_connection", side_effect=Exception("db error")):
        with pytest.raises(DatabaseReadError):
            events_repo.max_event_id()
        with pytest.raises(DatabaseReadError):
            events_repo.count_events("alice")
        with pytest.raises(DatabaseReadError):
            events_repo.fetch_page("alice")
        with pytest.raises(DatabaseReadError):
            events_repo.fetch_timeline_rows(sources=("pull",), rarities=("epic",))
        with pytest.raises(DatabaseReadError):
            users_repo.list_user_ids()


@pytest.mark.unit
@pytest.mark.db
def test_ledger_transaction_raises_write_error(users, ledger_service: LedgerService):
    with patch.object(
        db_connection, "get_connection", side_effect=sqlite3.OperationalError("locked")
    ):
        with pytest.raises(DatabaseWriteError) as exc_info:
            ledger_service.economy.add_credits("alice", 10, "quest_reward")
    assert exc_info.value.context.operation == "ledger.transaction"
    assert isinstance(exc_info.value.cause, sqlite3.OperationalError)


@pytest.mark.unit
def test_read_error_carries_context_and_cause():
    cause = ValueError("bad row")
    with pytest.raises(DatabaseReadError) as exc_info:
        raise_read_error("events.fetch_page", cause, details="user_id='alice'")
    err = exc_info.value
    assert err.context == DatabaseOperationContext("events.fetch_page", "user_id='alice'")
    assert err.cause is cause
    assert err.__cause__ is cause
    assert str(err) == "events.fetch_page: user_id='alice'"


@pytest.mark.unit
def test_typed_errors_pass_through_unchanged():
    original = DatabaseWriteError(context=DatabaseOperationContext("ledger.transaction"))
    with pytest.raises(DatabaseWriteError) as exc_info:
        raise_read_error("events.max_event_id", original)
    assert exc_info.value is original
