"""
Rollback engine: restore a user's economic state as of a cutover instant.

=============================================================================
ALGORITHM
=============================================================================

1. Fetch the user's events with ``timestamp >= cutover``, newest first.
2. Check that history explains the user's current state (replay vs. live).
   Depending on ``missing_history_policy`` unexplained resources either fail
   the rollback (``IncompleteHistoryError``) or are assumed to predate the
   cutover and are reported back.
3. Apply the inverse of each event, strictly newest first, as new correction
   events (origin ``rollback``, correlated by the rollback id):

   - ``CreditDelta(+n)``      -> ``CreditDelta(-n)`` (never below zero)
   - ``CardAdded``            -> ``CardRemoved`` of that exact instance
   - ``CardRemoved``          -> ``CardAdded`` only if the id is free
   - ``CodexUnlocked/Locked`` -> the opposite
   - ``ListingCreated/Removed`` and ``TriviaAttemptRecorded/Removed`` -> the opposite
   - trades                   -> a two-party movement for both participants

   An inverse whose target has already moved on (a card removed by a later,
   already-reverted event, a listing already gone) is logged and skipped.

4. Append ``RollbackApplied`` with the net balance delta and counts.

=============================================================================
TRADES
=============================================================================

Trade events are dual-written, one per participant, with a shared trade id.
A trade may appear several times in a window (executed, reversed by an
earlier rollback, re-executed by an undo). Those alternate, so the state at
the cutover is "before the earliest windowed trade event": an even number of
events cancels out and an odd number is undone by inverting the earliest one.

Reversing a marketplace purchase puts the card back on the market: the
seller's "sold" ``ListingRemoved`` carries the trade id as its correlation
id, and the listing is re-created once the seller holds the card again.

Undo inverts every correction the rollback wrote, including those on
counterparts' histories (delisted or relisted cards), newest first.

The counterpart's lock is required. The engine scans the window for trade
counterparts, locks the user and all counterparts in sorted order, then
re-reads the window and retries if the participant set changed meanwhile.

=============================================================================
WIPES
=============================================================================

A ``WipeApplied`` inside the window is a barrier: the wiped rows are gone and
their counterparts' histories were cut as well, so a rollback across a wipe
is rejected with ``ValidationError``.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import defaultdict
from collections.abc import Sequence
from datetime import date, datetime

from economy_ledger.config import MissingHistoryPolicy
from economy_ledger.db import credits_repo, events_repo, inventory_repo, market_repo, trivia_repo
from economy_ledger.ledger import mutations, replay
from economy_ledger.ledger.economy import require_user
from economy_ledger.ledger.errors import (
    ConcurrencyConflict,
    IncompleteHistoryError,
    ValidationError,
)
from economy_ledger.ledger.events import (
    AUDIT_KINDS,
    TRADE_KINDS,
    Event,
    EventKind,
    EventOrigin,
    NewEvent,
    as_instant,
    format_timestamp,
)
from economy_ledger.ledger.locks import UserLockManager
from economy_ledger.ledger.store import LedgerStore, LedgerTransaction
from economy_ledger.ledger.types import (
    Card,
    Listing,
    RollbackResult,
    RollbackUndoResult,
    TradeRecord,
    TriviaAttempt,
)

logger = logging.getLogger(__name__)

_MAX_LOCK_ATTEMPTS = 3


# =============================================================================
# INVERSE APPLICATION
# =============================================================================


class _Reverter:
    """Apply inverses of a newest-first event list inside one transaction."""

    def __init__(
        self,
        tx: LedgerTransaction,
        user_id: str,
        *,
        origin: EventOrigin,
        correlation_id: str,
        result: RollbackResult,
    ) -> None:
        self.tx = tx
        self.cursor = tx.cursor
        self.user_id = user_id
        self.origin = origin
        self.correlation_id = correlation_id
        self.result = result
        self._reverting: set[int] = set()

    def revert(self, events: Sequence[Event]) -> None:
        self._reverting = {event.id for event in events}
        trade_plan = _plan_trades(events)
        for event in events:
            if event.kind in AUDIT_KINDS:
                continue
            if event.kind in TRADE_KINDS:
                target = trade_plan[event.payload["trade_id"]]
                if target is not None and target != event.id:
                    continue
                if target is None:
                    # Executed/reversed pairs inside the window cancel out.
                    self.result.events_reverted += 1
                    continue
                self._invert_trade(event)
            else:
                self._invert(event)
            self.result.events_reverted += 1

    # -- helpers -------------------------------------------------------------

    def _skip(self, event: Event, reason: str) -> None:
        note = f"event {event.id} ({event.kind.value}): {reason}"
        logger.warning("Rollback %s for %s skipped %s", self.correlation_id, self.user_id, note)
        self.result.skipped.append(note)

    def _delist(self, card_id: str) -> None:
        delisted = mutations.delist_card(
            self.tx,
            card_id,
            "rollback",
            origin=self.origin,
            correlation_id=self.correlation_id,
        )
        if delisted is not None:
            self.result.listings_removed += 1

    def _restore_listing(self, listing: Listing) -> bool:
        """Re-create ``listing`` if its seller holds the card and nothing lists it."""
        cursor = self.cursor
        if (
            market_repo.get_listing(cursor, listing.listing_id) is not None
            or market_repo.get_listing_for_card(cursor, listing.card_id) is not None
            or inventory_repo.get_card_owner(cursor, listing.card_id) != listing.seller_user_id
        ):
            return False
        mutations.create_listing(
            self.tx, listing, origin=self.origin, correlation_id=self.correlation_id
        )
        self.result.listings_restored += 1
        return True

    def _relist_sold_card(self, event: Event, trade: TradeRecord) -> None:
        """Put a bought card back on the market after its purchase was reversed."""
        seller_id = trade.counterparty_user_id
        sold = [
            candidate
            for candidate in events_repo.fetch_by_correlation(
                self.cursor, trade.trade_id, user_id=seller_id
            )
            if candidate.kind is EventKind.LISTING_REMOVED
        ]
        for removal in sold:
            # Reverted on its own when the seller's window covers it.
            if removal.id in self._reverting:
                continue
            listing = Listing.from_payload(removal.payload["listing"])
            if not self._restore_listing(listing):
                self._skip(event, f"listing {listing.listing_id} cannot be restored")

    # -- single-user inverses -------------------------------------------------

    def _invert(self, event: Event) -> None:
        kind = event.kind
        payload = event.payload
        # Undo also reverts corrections written on a counterpart's history.
        tx, cursor, user_id = self.tx, self.cursor, event.user_id
        common = {"origin": self.origin, "correlation_id": self.correlation_id}

        if kind is EventKind.CREDIT_DELTA:
            wanted = -int(payload["amount"])
            balance = credits_repo.get_balance(cursor, user_id)
            applied = max(wanted, -balance)
            if applied != wanted:
                self._skip(event, f"credit inverse clamped from {wanted} to {applied}")
            if applied:
                mutations.credit(
                    tx,
                    user_id,
                    applied,
                    "rollback",
                    metadata={"reverts_event_id": event.id},
                    **common,
                )

        elif kind is EventKind.CARD_ADDED:
            card_id = payload["card"]["card_id"]
            if inventory_repo.get_card_owner(cursor, card_id) != user_id:
                self._skip(event, f"card {card_id} no longer held")
                return
            card = inventory_repo.get_card(cursor, card_id)
            removed = mutations.remove_card(tx, user_id, card, "rollback", **common)
            self.result.listings_removed += len(removed) - 1
            self.result.cards_removed += 1

        elif kind is EventKind.CARD_REMOVED:
            card = Card.from_payload(payload["card"])
            if inventory_repo.get_card_owner(cursor, card.card_id) is not None:
                self._skip(event, f"card {card.card_id} already present")
                return
            mutations.add_card(tx, user_id, card, "rollback", **common)
            self.result.cards_restored += 1

        elif kind in (EventKind.CODEX_UNLOCKED, EventKind.CODEX_LOCKED):
            character_id, variant = payload["character_id"], payload["variant"]
            held = inventory_repo.has_codex(cursor, user_id, character_id, variant)
            relock = kind is EventKind.CODEX_UNLOCKED
            if held != relock:
                self._skip(event, f"codex {character_id}/{variant} already in target state")
                return
            mutations.set_codex(tx, user_id, character_id, variant, unlocked=not relock, **common)
            if relock:
                self.result.codex_unlocks_removed += 1
            else:
                self.result.codex_unlocks_restored += 1

        elif kind is EventKind.LISTING_CREATED:
            listing = market_repo.get_listing(cursor, payload["listing"]["listing_id"])
            if listing is None:
                self._skip(event, "listing already removed")
                return
            mutations.remove_listing(tx, listing, "rollback", **common)
            self.result.listings_removed += 1

        elif kind is EventKind.LISTING_REMOVED:
            listing = Listing.from_payload(payload["listing"])
            if not self._restore_listing(listing):
                self._skip(event, f"listing {listing.listing_id} cannot be restored")

        elif kind in (EventKind.TRIVIA_ATTEMPT_RECORDED, EventKind.TRIVIA_ATTEMPT_REMOVED):
            attempt = TriviaAttempt.from_payload(payload["attempt"])
            exists = trivia_repo.attempt_exists(cursor, attempt.attempt_id)
            remove = kind is EventKind.TRIVIA_ATTEMPT_RECORDED
            if exists != remove:
                self._skip(event, f"trivia attempt {attempt.attempt_id} already in target state")
                return
            mutations.set_trivia_attempt(tx, attempt, recorded=not remove, **common)
            if remove:
                self.result.trivia_attempts_removed += 1
            else:
                self.result.trivia_attempts_restored += 1

        else:
            raise ValidationError(f"Event {event.id} of kind {kind.value} cannot be inverted")

    # -- two-party inverse ---------------------------------------------------------

    def _invert_trade(self, event: Event) -> None:
        """Move back whatever of the trade can still be moved, for both sides."""
        payload = event.payload
        cursor, user_id = self.cursor, event.user_id
        other_id = payload["counterpart_user_id"]
        trade = TradeRecord.from_payload(payload["trade"])

        user_gives = []
        for data in payload.get("cards_in", []):
            if inventory_repo.get_card_owner(cursor, data["card_id"]) == user_id:
                user_gives.append(Card.from_payload(data))
            else:
                self._skip(event, f"card {data['card_id']} no longer held by {user_id}")
        other_gives = []
        for data in payload.get("cards_out", []):
            if inventory_repo.get_card_owner(cursor, data["card_id"]) == other_id:
                other_gives.append(Card.from_payload(data))
            else:
                self._skip(event, f"card {data['card_id']} no longer held by {other_id}")

        balance = credits_repo.get_balance(cursor, user_id)
        user_pays = min(int(payload.get("credits_in", 0)), balance)
        other_pays = min(
            int(payload.get("credits_out", 0)), credits_repo.get_balance(cursor, other_id)
        )
        if user_pays != int(payload.get("credits_in", 0)):
            self._skip(event, f"{user_id} can only return {user_pays} credits")
        if other_pays != int(payload.get("credits_out", 0)):
            self._skip(event, f"{other_id} can only return {other_pays} credits")

        for card in user_gives + other_gives:
            self._delist(card.card_id)

        kind = (
            EventKind.TRADE_REVERSED
            if event.kind is EventKind.TRADE_EXECUTED
            else EventKind.TRADE_EXECUTED
        )
        if payload["side"] == "initiator":
            movement = {
                "initiator_gives": user_gives,
                "counterparty_gives": other_gives,
                "initiator_pays": user_pays,
                "counterparty_pays": other_pays,
            }
        else:
            movement = {
                "initiator_gives": other_gives,
                "counterparty_gives": user_gives,
                "initiator_pays": other_pays,
                "counterparty_pays": user_pays,
            }
        mutations.trade_sides(
            self.tx,
            trade,
            kind,
            origin=self.origin,
            correlation_id=self.correlation_id,
            **movement,
        )
        self.result.trades_reversed += 1
        self.result.cards_removed += len(user_gives)
        self.result.cards_restored += len(other_gives)
        if kind is EventKind.TRADE_REVERSED and trade.source == "marketplace":
            self._relist_sold_card(event, trade)


def _plan_trades(events: Sequence[Event]) -> dict[str, int | None]:
    """Per trade id: the event to invert, or None when the window nets to zero."""
    by_trade: dict[str, list[int]] = defaultdict(list)
    for event in events:
        if event.kind in TRADE_KINDS:
            by_trade[event.payload["trade_id"]].append(event.id)
    return {
        trade_id: (min(ids) if len(ids) % 2 else None) for trade_id, ids in by_trade.items()
    }


def _undoable_corrections(
    cursor: sqlite3.Cursor, rollback_id: str, user_id: str, participants: set[str]
) -> list[Event]:
    """
    Corrections a rollback wrote on any participant's history, newest first.

    A trade correction is dual-written; only the rolled-back user's side is
    kept since inverting it moves both sides again.
    """
    return [
        event
        for event in events_repo.fetch_by_correlation(cursor, rollback_id)
        if event.user_id in participants
        and not (event.kind in TRADE_KINDS and event.user_id != user_id)
    ]


def _counterparts(events: Sequence[Event]) -> set[str]:
    return {
        event.payload["counterpart_user_id"] for event in events if event.kind in TRADE_KINDS
    }


# =============================================================================
# ENGINE
# =============================================================================


class RollbackEngine:
    """Roll users back to a cutover instant and undo the latest rollback."""

    def __init__(
        self,
        store: LedgerStore,
        locks: UserLockManager,
        *,
        missing_history_policy: MissingHistoryPolicy = "fail",
    ) -> None:
        self.store = store
        self.locks = locks
        self.missing_history_policy = missing_history_policy

    # -------------------------------------------------------------------------
    # ROLLBACK
    # -------------------------------------------------------------------------

    def rollback_user(self, user_id: str, cutover: date | datetime) -> RollbackResult:
        """
        Revert every event of ``user_id`` at or after ``cutover``.

        A ``date`` cutover means the start of that UTC day.

        Raises:
            UnknownUserError: ``user_id`` is not registered.
            ValidationError: The window contains a wipe.
            IncompleteHistoryError: History cannot explain current state and
                the policy is ``fail``.
            ConcurrencyConflict: Locks could not be taken.
        """
        instant = as_instant(cutover)
        since = format_timestamp(instant)

        for _ in range(_MAX_LOCK_ATTEMPTS):
            with self.store.reader() as cursor:
                require_user(cursor, user_id)
                window = events_repo.fetch_user_events_since(cursor, user_id, since)
            participants = {user_id} | _counterparts(window)

            with self.locks.hold(*participants):
                with self.store.transaction() as tx:
                    window = events_repo.fetch_user_events_since(tx.cursor, user_id, since)
                    if {user_id} | _counterparts(window) != participants:
                        logger.info("Rollback participants for %s changed; retrying", user_id)
                        continue
                    return self._rollback_locked(tx, user_id, instant, window)

        raise ConcurrencyConflict(sorted(participants), self.locks.timeout)

    def _rollback_locked(
        self,
        tx: LedgerTransaction,
        user_id: str,
        instant: datetime,
        window: list[Event],
    ) -> RollbackResult:
        for event in window:
            if event.kind is EventKind.WIPE_APPLIED:
                raise ValidationError(
                    f"Cannot roll back {user_id!r} to {format_timestamp(instant)}: "
                    f"a wipe was applied at {format_timestamp(event.timestamp)}"
                )

        rollback_id = f"rollback-{uuid.uuid4().hex[:16]}"
        result = RollbackResult(user_id=user_id, cutover=instant, rollback_id=rollback_id)
        result.assumed_resources = self._check_history(tx.cursor, user_id)

        balance_before = credits_repo.get_balance(tx.cursor, user_id)
        _Reverter(
            tx,
            user_id,
            origin=EventOrigin.ROLLBACK,
            correlation_id=rollback_id,
            result=result,
        ).revert(window)
        result.new_balance = credits_repo.get_balance(tx.cursor, user_id)
        result.balance_delta = result.new_balance - balance_before

        touched = sorted({event.user_id for event in tx.appended})
        tx.append(
            NewEvent(
                user_id=user_id,
                kind=EventKind.ROLLBACK_APPLIED,
                payload={
                    "rollback_id": rollback_id,
                    "cutover": format_timestamp(instant),
                    "balance_before": balance_before,
                    "balance_after": result.new_balance,
                    "balance_delta": result.balance_delta,
                    "counts": result.counts(),
                    "events_reverted": result.events_reverted,
                    "reverted_event_ids": [event.id for event in window],
                    "participants": touched,
                    "skipped": result.skipped,
                    "assumed_resources": result.assumed_resources,
                },
                origin=EventOrigin.ADMIN,
                correlation_id=rollback_id,
            )
        )
        logger.info(
            "Rolled back %s to %s: balance %d -> %d, %d item(s) reverted, %d skipped",
            user_id,
            format_timestamp(instant),
            balance_before,
            result.new_balance,
            result.items_reverted,
            len(result.skipped),
        )
        return result

    def _check_history(self, cursor: sqlite3.Cursor, user_id: str) -> list[str]:
        """Apply the missing-history policy; returns resources assumed to predate history."""
        report = replay.verify_user(cursor, user_id)
        unexplained = list(report.unexplained)
        if not unexplained:
            return []
        if self.missing_history_policy == "fail":
            raise IncompleteHistoryError(user_id, unexplained)
        logger.warning(
            "Rollback for %s assumes %d resource(s) predate history: %s",
            user_id,
            len(unexplained),
            ", ".join(unexplained[:10]),
        )
        return unexplained

    # -------------------------------------------------------------------------
    # UNDO
    # -------------------------------------------------------------------------

    @staticmethod
    def _undo_candidate(cursor: sqlite3.Cursor, user_id: str) -> Event | None:
        """The user's last rollback, if nothing has touched its participants since."""
        latest = events_repo.get_latest_event(cursor, user_id)
        if latest is None or latest.kind is not EventKind.ROLLBACK_APPLIED:
            return None
        rollback_id = latest.payload["rollback_id"]
        for other_id in latest.payload.get("participants", []):
            if other_id == user_id:
                continue
            other_latest = events_repo.get_latest_event(cursor, other_id)
            if other_latest is None or other_latest.correlation_id != rollback_id:
                return None
        return latest

    def has_rollback_undo_available(self, user_id: str) -> bool:
        """True when the user's latest event is a rollback that can still be undone."""
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return self._undo_candidate(cursor, user_id) is not None

    def undo_rollback(self, user_id: str) -> RollbackUndoResult:
        """
        Invert the corrections of the user's most recent rollback.

        Only allowed while no event has been appended for the user, or for
        any other user the rollback touched, since the rollback.
        """
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            candidate = self._undo_candidate(cursor, user_id)
        if candidate is None:
            raise ValidationError(
                f"No rollback to undo for {user_id!r}: none recorded, or new events "
                "were appended since"
            )
        participants = set(candidate.payload.get("participants", [])) | {user_id}

        with self.locks.hold(*participants):
            with self.store.transaction() as tx:
                current = self._undo_candidate(tx.cursor, user_id)
                if current is None or current.id != candidate.id:
                    raise ValidationError(f"Rollback for {user_id!r} changed; undo aborted")
                rollback_id = current.payload["rollback_id"]
                undo_id = f"undo-{uuid.uuid4().hex[:16]}"
                accumulator = RollbackResult(
                    user_id=user_id, cutover=current.timestamp, rollback_id=undo_id
                )
                corrections = _undoable_corrections(tx.cursor, rollback_id, user_id, participants)
                _Reverter(
                    tx,
                    user_id,
                    origin=EventOrigin.ROLLBACK_UNDO,
                    correlation_id=undo_id,
                    result=accumulator,
                ).revert(corrections)
                new_balance = credits_repo.get_balance(tx.cursor, user_id)
                tx.append(
                    NewEvent(
                        user_id=user_id,
                        kind=EventKind.ROLLBACK_UNDONE,
                        payload={
                            "rollback_id": rollback_id,
                            "undo_id": undo_id,
                            "counts": accumulator.counts(),
                            "events_reverted": accumulator.events_reverted,
                            "balance_after": new_balance,
                            "skipped": accumulator.skipped,
                        },
                        origin=EventOrigin.ADMIN,
                        correlation_id=undo_id,
                    )
                )

        logger.info(
            "Undid rollback %s for %s: %d correction(s) reverted, balance now %d",
            rollback_id,
            user_id,
            accumulator.events_reverted,
            new_balance,
        )
        return RollbackUndoResult(
            user_id=user_id,
            rollback_id=rollback_id,
            new_balance=new_balance,
            events_reverted=accumulator.events_reverted,
            skipped=tuple(accumulator.skipped),
        )
