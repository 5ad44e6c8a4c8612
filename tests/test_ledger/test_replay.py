"""Replay consistency: folding a user's history reproduces the aggregates."""

import pytest

from economy_ledger.db.connection import connection_scope
from economy_ledger.ledger import replay
from economy_ledger.ledger.service import LedgerService
from tests.helpers import day, make_card, seed_untracked_codex, seed_untracked_state


@pytest.mark.unit
@pytest.mark.db
def test_mixed_operations_replay_consistently(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_credits("alice", 500, at=day(1))
    economy.add_credits("bob", 300, at=day(1))
    economy.add_card("alice", make_card("c1", "epic"), at=day(1))
    economy.add_card("alice", make_card("c2"), at=day(1))
    economy.unlock_codex("alice", "char-c1", at=day(2))
    listing = economy.create_listing("alice", "c2", 60, at=day(2))
    economy.purchase_listing("bob", listing.listing_id, at=day(3))
    economy.execute_trade("alice", "carol", offered_credits=40, at=day(4))
    economy.record_trivia_attempt("carol", score=3, credits_earned=10, at=day(5))
    economy.remove_card("alice", "c1", at=day(6))
    economy.lock_codex("alice", "char-c1", at=day(6))

    reports = ledger_service.verify_all()

    assert [report.user_id for report in reports] == ["alice", "bob", "carol"]
    assert all(report.consistent for report in reports)


@pytest.mark.unit
@pytest.mark.db
def test_untracked_state_is_unexplained(users, ledger_service: LedgerService):
    seed_untracked_state("alice", balance=200, card_ids=("c-old",))
    seed_untracked_codex("alice", [("char-1", "regular")])

    report = ledger_service.verify_user("alice")

    assert not report.consistent
    assert report.unexplained == (
        "card:c-old",
        "codex:char-1/regular",
        "credits:live=200,logged=0",
    )
    assert report.missing == ()


@pytest.mark.unit
@pytest.mark.db
def test_deleted_aggregate_is_missing(users, ledger_service: LedgerService):
    ledger_service.economy.add_card("alice", make_card("c1"))
    with connection_scope(write=True) as conn:
        conn.execute("DELETE FROM cards WHERE card_id = 'c1'")

    report = ledger_service.verify_user("alice")

    assert report.missing == ("card:c1",)
    assert report.to_dict()["consistent"] is False


@pytest.mark.unit
def test_fold_empty_history():
    state = replay.fold([])
    assert state.balance == 0
    assert state.cards == set()
