"""Event log repository queries."""

import pytest

from economy_ledger.db import events_repo
from economy_ledger.ledger.events import EventKind
from economy_ledger.ledger.service import LedgerService
from tests.helpers import day, make_card


@pytest.mark.unit
@pytest.mark.db
def test_user_events_since_are_newest_first(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_credits("alice", 10, "a", at=day(1))
    economy.add_credits("alice", 20, "b", at=day(3))
    economy.add_credits("alice", 30, "c", at=day(5))

    with ledger_service.store.reader() as cursor:
        window = events_repo.fetch_user_events_since(
            cursor, "alice", "2024-01-03T00:00:00.000000Z"
        )
        everything = events_repo.fetch_user_events(cursor, "alice")

    assert [event.payload["amount"] for event in window] == [30, 20]
    assert [event.user_seq for event in everything] == [1, 2, 3]


@pytest.mark.unit
@pytest.mark.db
def test_trade_events_share_correlation(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(1))
    economy.add_credits("bob", 100, "seed", at=day(1))
    trade = economy.execute_trade(
        "alice", "bob", offered_card_ids=["c1"], requested_credits=40, at=day(2)
    )

    with ledger_service.store.reader() as cursor:
        both = events_repo.fetch_by_correlation(cursor, trade.trade_id)
        bob_only = events_repo.fetch_by_correlation(cursor, trade.trade_id, user_id="bob")
        latest = events_repo.get_latest_event(cursor, "bob")

    assert {event.user_id for event in both} == {"alice", "bob"}
    assert all(event.kind is EventKind.TRADE_EXECUTED for event in both)
    assert [event.user_id for event in bob_only] == ["bob"]
    assert latest.payload["side"] == "counterparty"
    assert latest.payload["cards_in"][0]["card_id"] == "c1"


@pytest.mark.unit
@pytest.mark.db
def test_logged_codex_keys(users, ledger_service: LedgerService):
    ledger_service.economy.unlock_codex("alice", "char-1", "holo")

    with ledger_service.store.reader() as cursor:
        assert events_repo.logged_codex_keys(cursor, "alice") == {("char-1", "holo")}
        assert events_repo.logged_codex_keys(cursor, "bob") == set()


@pytest.mark.unit
@pytest.mark.db
def test_counts_and_max_id(users, ledger_service: LedgerService):
    assert events_repo.max_event_id() == 0
    ledger_service.economy.add_credits("alice", 5)
    ledger_service.economy.add_credits("bob", 5)

    assert events_repo.count_events() == 2
    assert events_repo.count_events("alice") == 1
    assert events_repo.max_event_id() == 2
