"""Tests for the backfill stamper (economy_ledger/ledger/backfill.py)."""

import pytest

from economy_ledger.db import events_repo
from economy_ledger.ledger.errors import UnknownUserError
from economy_ledger.ledger.events import EventKind, EventOrigin
from economy_ledger.ledger.service import LedgerService
from tests.constants import BASELINE_DAY, CUTOVER_DAY
from tests.helpers import day, seed_untracked_codex, seed_untracked_state

# ============================================================================
# CODEX
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_backfill_codex_stamps_unlogged_unlocks(users, ledger_service: LedgerService):
    seed_untracked_codex("alice", [("char-1", "regular"), ("char-2", "holo")])
    seed_untracked_codex("bob", [("char-3", "regular")])
    ledger_service.economy.unlock_codex("alice", "char-9")

    result = ledger_service.backfill.backfill_codex(BASELINE_DAY)

    assert result.entries_added == 3
    assert result.users_processed == 3
    assert result.message == (
        "Backfilled 3 codex log entries with date 2024-01-01 for all users"
    )
    stamped = [
        event
        for event in ledger_service.store.query("alice")
        if event.origin is EventOrigin.BACKFILL
    ]
    assert {event.payload["character_id"] for event in stamped} == {"char-1", "char-2"}
    assert all(event.kind is EventKind.CODEX_UNLOCKED for event in stamped)
    assert all(event.timestamp.isoformat() == "2024-01-01T00:00:00+00:00" for event in stamped)
    assert ledger_service.verify_user("alice").consistent


@pytest.mark.unit
@pytest.mark.db
def test_backfill_codex_is_idempotent(users, ledger_service: LedgerService):
    seed_untracked_codex("alice", [("char-1", "regular")])
    ledger_service.backfill.backfill_codex(BASELINE_DAY, "alice")
    count = events_repo.count_events("alice")

    again = ledger_service.backfill.backfill_codex(BASELINE_DAY, "alice")

    assert again.entries_added == 0
    assert events_repo.count_events("alice") == count


@pytest.mark.unit
@pytest.mark.db
def test_backfill_unknown_user(users, ledger_service: LedgerService):
    with pytest.raises(UnknownUserError):
        ledger_service.backfill.backfill_codex(BASELINE_DAY, "mallory")


# ============================================================================
# INVENTORY
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_backfill_inventory_makes_history_explain_state(users, ledger_service: LedgerService):
    seed_untracked_state("alice", balance=500, card_ids=("c-old",))
    ledger_service.economy.add_credits("alice", 200, at=day(5))
    assert not ledger_service.verify_user("alice").consistent

    result = ledger_service.backfill.backfill_inventory(BASELINE_DAY, "alice")

    assert result.entries_added == 2
    assert result.message.startswith("Backfilled 2 inventory baseline entries")
    assert ledger_service.verify_user("alice").consistent
    assert ledger_service.economy.get_balance("alice") == 700

    again = ledger_service.backfill.backfill_inventory(BASELINE_DAY, "alice")
    assert again.entries_added == 0


@pytest.mark.unit
@pytest.mark.db
def test_backfill_then_rollback_succeeds_under_fail_policy(users, ledger_service):
    """Stamped baselines predate the cutover, so rollback keeps them."""
    seed_untracked_state("alice", balance=500, card_ids=("c-old",))
    ledger_service.economy.add_credits("alice", 200, at=day(5))
    ledger_service.backfill.backfill_inventory(BASELINE_DAY, "alice")

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.new_balance == 500
    assert result.assumed_resources == []
    cards = ledger_service.economy.list_cards("alice")
    assert [card.card_id for card in cards] == ["c-old"]
