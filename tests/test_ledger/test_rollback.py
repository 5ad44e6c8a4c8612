"""
Tests for the rollback engine (economy_ledger/ledger/rollback.py).

Tests cover:
- Restoring balances and inventory as of a day cutover
- Two-party trade reversal
- Missing-history policies
- Wipes as rollback barriers
- Undoing the most recent rollback
"""

from datetime import UTC, datetime

import pytest

from economy_ledger.db import events_repo
from economy_ledger.ledger.errors import IncompleteHistoryError, UnknownUserError, ValidationError
from economy_ledger.ledger.events import EventKind, EventOrigin
from economy_ledger.ledger.service import LedgerService
from tests.constants import CUTOVER_DAY, WIPE_WORD
from tests.helpers import day, make_card, seed_untracked_state


def _snapshot(service: LedgerService, user_id: str) -> dict:
    economy = service.economy
    return {
        "balance": economy.get_balance(user_id),
        "cards": sorted(card.card_id for card in economy.list_cards(user_id)),
        "codex": sorted(economy.list_codex(user_id)),
        "listings": sorted(
            (listing.listing_id, listing.card_id, listing.asking_price)
            for listing in economy.list_listings(user_id)
        ),
    }


def _seed_history(service: LedgerService) -> None:
    """+500 on Jan 1, +200 on Jan 3, then -100 and a new card on Jan 5."""
    economy = service.economy
    economy.add_credits("alice", 500, "quest_reward", at=day(1))
    economy.add_credits("alice", 200, "quest_reward", at=day(3))
    economy.deduct_credits("alice", 100, "pack_purchase", at=day(5))
    economy.add_card("alice", make_card("c-new", "epic"), at=day(5, hour=13))


# ============================================================================
# SINGLE-USER ROLLBACK
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_rollback_restores_state_at_cutover(users, ledger_service: LedgerService):
    _seed_history(ledger_service)
    assert ledger_service.economy.get_balance("alice") == 600

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.new_balance == 700
    assert result.balance_delta == 100
    assert result.cards_removed == 1
    assert result.events_reverted == 2
    assert result.items_reverted == 1
    assert result.skipped == []
    assert result.rollback_id.startswith("rollback-")
    assert result.message("2024-01-04").startswith("Rolled back to 2024-01-04. Credits: 700")
    assert ledger_service.economy.list_cards("alice") == []
    assert ledger_service.verify_user("alice").consistent


@pytest.mark.unit
@pytest.mark.db
def test_rollback_matches_state_captured_at_cutover(users, ledger_service: LedgerService):
    """500 credits and three cards, +200, a card traded away, two pack pulls."""
    economy = ledger_service.economy
    economy.add_credits("alice", 500, "quest_reward", at=day(1))
    for card_id in ("c1", "c2", "c3"):
        economy.add_card("alice", make_card(card_id), at=day(1))
    economy.unlock_codex("alice", "char-c1", at=day(1))
    economy.create_listing("alice", "c3", 60, at=day(2))
    economy.add_credits("alice", 200, "quest_reward", at=day(3))
    at_cutover = _snapshot(ledger_service, "alice")

    economy.execute_trade("alice", "bob", offered_card_ids=["c2"], at=day(5))
    economy.add_card("alice", make_card("p1", "epic"), at=day(7))
    economy.add_card("alice", make_card("p2"), at=day(7, hour=13))
    assert _snapshot(ledger_service, "alice") != at_cutover

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert at_cutover["balance"] == 700
    assert at_cutover["cards"] == ["c1", "c2", "c3"]
    assert _snapshot(ledger_service, "alice") == at_cutover
    assert result.trades_reversed == 1
    assert result.cards_removed == 2
    assert economy.list_cards("bob") == []
    assert all(report.consistent for report in ledger_service.verify_all())


@pytest.mark.unit
@pytest.mark.db
def test_rollback_appends_corrections_not_edits(users, ledger_service: LedgerService):
    _seed_history(ledger_service)
    before = [event.id for event in ledger_service.store.query("alice")]

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    after = list(ledger_service.store.query("alice"))
    assert [event.id for event in after[: len(before)]] == before
    corrections = after[len(before) :]
    assert {event.origin for event in corrections[:-1]} == {EventOrigin.ROLLBACK}
    assert all(event.correlation_id == result.rollback_id for event in corrections)
    audit = corrections[-1]
    assert audit.kind is EventKind.ROLLBACK_APPLIED
    assert audit.payload["balance_before"] == 600
    assert audit.payload["balance_after"] == 700
    assert audit.payload["cutover"] == "2024-01-04T00:00:00.000000Z"


@pytest.mark.unit
@pytest.mark.db
def test_rollback_with_empty_window_changes_nothing(users, ledger_service: LedgerService):
    _seed_history(ledger_service)

    result = ledger_service.rollback.rollback_user("alice", datetime.now(UTC))

    assert result.new_balance == 600
    assert result.items_reverted == 0
    assert result.events_reverted == 0
    assert len(ledger_service.economy.list_cards("alice")) == 1


@pytest.mark.unit
@pytest.mark.db
def test_rollback_reverts_codex_listings_and_trivia(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(1))
    economy.unlock_codex("alice", "char-old", at=day(1))
    old_listing = economy.create_listing("alice", "c1", 40, at=day(2))
    economy.remove_listing(old_listing.listing_id, at=day(5))
    economy.unlock_codex("alice", "char-new", "holo", at=day(5))
    economy.record_trivia_attempt("alice", score=4, credits_earned=20, at=day(6))

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.codex_unlocks_removed == 1
    assert result.listings_restored == 1
    assert result.trivia_attempts_removed == 1
    assert result.new_balance == 0
    assert economy.list_codex("alice") == [("char-old", "regular")]
    assert [listing.listing_id for listing in economy.list_listings("alice")] == [
        old_listing.listing_id
    ]
    assert ledger_service.verify_user("alice").consistent


@pytest.mark.unit
@pytest.mark.db
def test_removed_card_is_restored_with_same_identity(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    original = economy.add_card("alice", make_card("c1", "legendary"), at=day(1))
    economy.remove_card("alice", "c1", at=day(5))

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.cards_restored == 1
    assert economy.list_cards("alice") == [original]


@pytest.mark.unit
@pytest.mark.db
def test_rollback_unknown_user(users, ledger_service: LedgerService):
    with pytest.raises(UnknownUserError):
        ledger_service.rollback.rollback_user("mallory", CUTOVER_DAY)


# ============================================================================
# TRADES
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_trade_is_reversed_for_both_participants(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.trades_reversed == 1
    assert result.cards_restored == 1
    assert result.new_balance == 0
    assert [card.card_id for card in economy.list_cards("alice")] == ["c1"]
    assert economy.list_cards("bob") == []
    assert economy.get_balance("bob") == 300
    assert economy.summary("alice")["trades"][0]["status"] == "reversed"
    assert all(report.consistent for report in ledger_service.verify_all())

    with ledger_service.store.reader() as cursor:
        bob_corrections = events_repo.fetch_by_correlation(
            cursor, result.rollback_id, user_id="bob"
        )
    assert [event.kind for event in bob_corrections] == [EventKind.TRADE_REVERSED]


@pytest.mark.unit
@pytest.mark.db
def test_trade_reversal_skips_items_that_moved_on(users, ledger_service: LedgerService):
    """A card the counterparty already gave away cannot be taken back."""
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))
    economy.execute_trade("bob", "carol", offered_card_ids=["c1"], at=day(6))

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.trades_reversed == 1
    assert result.cards_restored == 0
    assert any("c1 no longer held by bob" in note for note in result.skipped)
    assert economy.get_balance("bob") == 300
    assert [card.card_id for card in economy.list_cards("carol")] == ["c1"]


@pytest.mark.unit
@pytest.mark.db
def test_reversed_purchase_relists_card_for_seller(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_credits("alice", 500, at=day(1))
    economy.add_card("bob", make_card("b1", "epic"), at=day(1))
    listing = economy.create_listing("bob", "b1", 120, at=day(2))
    economy.purchase_listing("alice", listing.listing_id, at=day(5))
    assert economy.list_listings("bob") == []

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.trades_reversed == 1
    assert result.listings_restored == 1
    assert result.skipped == []
    assert economy.get_balance("alice") == 500
    assert economy.get_balance("bob") == 0
    assert [card.card_id for card in economy.list_cards("bob")] == ["b1"]
    assert economy.list_listings("bob") == [listing]
    assert all(report.consistent for report in ledger_service.verify_all())


@pytest.mark.unit
@pytest.mark.db
def test_seller_rollback_restores_sold_listing_once(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_credits("alice", 500, at=day(1))
    economy.add_card("bob", make_card("b1", "epic"), at=day(1))
    listing = economy.create_listing("bob", "b1", 120, at=day(2))
    economy.purchase_listing("alice", listing.listing_id, at=day(5))

    result = ledger_service.rollback.rollback_user("bob", CUTOVER_DAY)

    assert result.listings_restored == 1
    assert result.skipped == []
    assert economy.list_listings("bob") == [listing]
    assert economy.get_balance("alice") == 500


# ============================================================================
# MISSING HISTORY
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_incomplete_history_fails_by_default(users, ledger_service: LedgerService):
    seed_untracked_state("alice", balance=500, card_ids=("c-old",))
    ledger_service.economy.add_credits("alice", 200, at=day(5))
    events_before = events_repo.count_events("alice")

    with pytest.raises(IncompleteHistoryError) as exc_info:
        ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert exc_info.value.user_id == "alice"
    assert "card:c-old" in exc_info.value.resources
    assert "credits:live=700,logged=200" in exc_info.value.resources
    assert ledger_service.economy.get_balance("alice") == 700
    assert events_repo.count_events("alice") == events_before


@pytest.mark.unit
@pytest.mark.db
def test_assume_existed_policy_keeps_unexplained_state(users, assume_existed_service):
    seed_untracked_state("alice", balance=500, card_ids=("c-old",))
    assume_existed_service.economy.add_credits("alice", 200, at=day(5))

    result = assume_existed_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.new_balance == 500
    assert "card:c-old" in result.assumed_resources
    cards = assume_existed_service.economy.list_cards("alice")
    assert [card.card_id for card in cards] == ["c-old"]


# ============================================================================
# WIPE BARRIER
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_rollback_across_wipe_is_rejected(users, ledger_service: LedgerService):
    ledger_service.economy.add_credits("alice", 100, at=day(1))
    ledger_service.wipe.wipe_user_full("alice", WIPE_WORD)

    with pytest.raises(ValidationError, match="wipe was applied"):
        ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert ledger_service.economy.get_balance("alice") == 0


# ============================================================================
# UNDO
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_undo_rollback_round_trip(users, ledger_service: LedgerService):
    _seed_history(ledger_service)
    engine = ledger_service.rollback
    engine.rollback_user("alice", CUTOVER_DAY)
    assert engine.has_rollback_undo_available("alice") is True

    undo = engine.undo_rollback("alice")

    assert undo.new_balance == 600
    assert undo.events_reverted == 2
    assert [card.card_id for card in ledger_service.economy.list_cards("alice")] == ["c-new"]
    assert engine.has_rollback_undo_available("alice") is False
    latest = list(ledger_service.store.query("alice"))[-1]
    assert latest.kind is EventKind.ROLLBACK_UNDONE
    assert ledger_service.verify_user("alice").consistent


@pytest.mark.unit
@pytest.mark.db
def test_undo_restores_trade_for_both_participants(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))
    ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    ledger_service.rollback.undo_rollback("alice")

    assert economy.get_balance("alice") == 100
    assert economy.get_balance("bob") == 200
    assert [card.card_id for card in economy.list_cards("bob")] == ["c1"]
    assert economy.summary("alice")["trades"][0]["status"] == "executed"


@pytest.mark.unit
@pytest.mark.db
def test_undo_restores_counterpart_listing(users, ledger_service: LedgerService):
    """The rollback delisted bob's card; undo lists it again."""
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))
    listing = economy.create_listing("bob", "c1", 80, at=day(6))
    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)
    assert result.listings_removed == 1
    assert economy.list_listings("bob") == []

    undo = ledger_service.rollback.undo_rollback("alice")

    assert undo.events_reverted == 2
    assert [card.card_id for card in economy.list_cards("bob")] == ["c1"]
    assert economy.list_listings("bob") == [listing]
    assert economy.get_balance("bob") == 200
    assert all(report.consistent for report in ledger_service.verify_all())


@pytest.mark.unit
@pytest.mark.db
def test_undo_of_reversed_purchase_withdraws_relisting(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_credits("alice", 500, at=day(1))
    economy.add_card("bob", make_card("b1", "epic"), at=day(1))
    listing = economy.create_listing("bob", "b1", 120, at=day(2))
    economy.purchase_listing("alice", listing.listing_id, at=day(5))
    ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    ledger_service.rollback.undo_rollback("alice")

    assert [card.card_id for card in economy.list_cards("alice")] == ["b1"]
    assert economy.list_listings("bob") == []
    assert economy.get_balance("alice") == 380
    assert economy.get_balance("bob") == 120
    assert all(report.consistent for report in ledger_service.verify_all())


@pytest.mark.unit
@pytest.mark.db
def test_undo_unavailable_after_new_event(users, ledger_service: LedgerService):
    _seed_history(ledger_service)
    ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)
    ledger_service.economy.add_credits("alice", 1)

    assert ledger_service.rollback.has_rollback_undo_available("alice") is False
    with pytest.raises(ValidationError, match="No rollback to undo"):
        ledger_service.rollback.undo_rollback("alice")


@pytest.mark.unit
@pytest.mark.db
def test_undo_unavailable_after_counterpart_moves_on(users, ledger_service: LedgerService):
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))
    ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    economy.add_credits("bob", 5)

    assert ledger_service.rollback.has_rollback_undo_available("alice") is False


@pytest.mark.unit
@pytest.mark.db
def test_undo_without_rollback(users, ledger_service: LedgerService):
    assert ledger_service.rollback.has_rollback_undo_available("alice") is False
    with pytest.raises(ValidationError):
        ledger_service.rollback.undo_rollback("alice")


@pytest.mark.unit
@pytest.mark.db
def test_second_rollback_over_undone_window_nets_out(users, ledger_service: LedgerService):
    """Executed, reversed and re-executed trade events cancel to one inverse."""
    economy = ledger_service.economy
    economy.add_card("alice", make_card("c1"), at=day(2))
    economy.add_credits("bob", 300, at=day(2))
    economy.execute_trade("alice", "bob", offered_card_ids=["c1"], requested_credits=100, at=day(5))
    ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)
    ledger_service.rollback.undo_rollback("alice")

    result = ledger_service.rollback.rollback_user("alice", CUTOVER_DAY)

    assert result.trades_reversed == 1
    assert economy.get_balance("alice") == 0
    assert economy.get_balance("bob") == 300
    assert [card.card_id for card in economy.list_cards("alice")] == ["c1"]
    assert all(report.consistent for report in ledger_service.verify_all())
