"""Backfill stamper.

Aggregates that predate event logging have no history, which leaves the
rollback engine unable to prove them. Backfill appends synthetic, explicitly
backdated events (origin ``backfill``) that record such state as having
existed at the start of a chosen day. The events are not projected: the
state they describe is already in the aggregates.

Both operations are idempotent; a second run finds nothing left to stamp.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from economy_ledger.db import events_repo, inventory_repo, market_repo, users_repo
from economy_ledger.ledger import replay
from economy_ledger.ledger.economy import require_user
from economy_ledger.ledger.events import EventKind, EventOrigin, NewEvent, start_of_day
from economy_ledger.ledger.locks import UserLockManager
from economy_ledger.ledger.store import LedgerStore, LedgerTransaction
from economy_ledger.ledger.types import BackfillResult, TriviaAttempt

logger = logging.getLogger(__name__)


class BackfillStamper:
    """Stamp baseline events for state the event log does not yet explain."""

    def __init__(self, store: LedgerStore, locks: UserLockManager) -> None:
        self.store = store
        self.locks = locks

    def _targets(self, user_id: str | None) -> list[str]:
        if user_id is None:
            return users_repo.list_user_ids()
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
        return [user_id]

    def backfill_codex(self, day: date, user_id: str | None = None) -> BackfillResult:
        """
        Append ``CodexUnlocked`` for every codex unlock with no logged unlock.

        Args:
            day: Baseline date; events are stamped at 00:00:00 UTC that day.
            user_id: Limit to one user, or None for every user.
        """
        at = start_of_day(day)
        added = 0
        targets = self._targets(user_id)
        for target in targets:
            with self.locks.hold(target):
                with self.store.transaction() as tx:
                    logged = events_repo.logged_codex_keys(tx.cursor, target)
                    for character_id, variant in inventory_repo.list_codex(tx.cursor, target):
                        if (character_id, variant) in logged:
                            continue
                        self._stamp(
                            tx,
                            NewEvent(
                                user_id=target,
                                kind=EventKind.CODEX_UNLOCKED,
                                payload={"character_id": character_id, "variant": variant},
                                timestamp=at,
                                origin=EventOrigin.BACKFILL,
                            ),
                        )
                        added += 1

        result = BackfillResult(
            entries_added=added, day=day, user_id=user_id, users_processed=len(targets)
        )
        logger.info(result.message)
        return result

    def backfill_inventory(self, day: date, user_id: str | None = None) -> BackfillResult:
        """
        Stamp baseline events so that replaying history reproduces live state.

        Covers held cards, listings and trivia attempts with no establishing
        event, plus a ``CreditDelta`` (reason ``backfill_baseline``) for any
        difference between the live balance and the logged one.
        """
        at = start_of_day(day)
        added = 0
        targets = self._targets(user_id)
        for target in targets:
            with self.locks.hold(target):
                with self.store.transaction() as tx:
                    added += self._backfill_user_inventory(tx, target, at)

        result = BackfillResult(
            entries_added=added,
            day=day,
            user_id=user_id,
            users_processed=len(targets),
            target="inventory",
        )
        logger.info(result.message)
        return result

    def _backfill_user_inventory(self, tx: LedgerTransaction, user_id: str, at: datetime) -> int:
        cursor = tx.cursor
        replayed = replay.fold(events_repo.fetch_user_events(cursor, user_id))
        live = replay.snapshot(cursor, user_id)
        baseline: list[NewEvent] = []

        for card in inventory_repo.list_cards(cursor, user_id):
            if card.card_id not in replayed.cards:
                baseline.append(
                    NewEvent(
                        user_id=user_id,
                        kind=EventKind.CARD_ADDED,
                        payload={"card": card.to_payload(), "source": "backfill"},
                        timestamp=at,
                        origin=EventOrigin.BACKFILL,
                    )
                )
        for listing in market_repo.list_listings(cursor, user_id):
            if listing.listing_id not in replayed.listings:
                baseline.append(
                    NewEvent(
                        user_id=user_id,
                        kind=EventKind.LISTING_CREATED,
                        payload={"listing": listing.to_payload()},
                        timestamp=at,
                        origin=EventOrigin.BACKFILL,
                    )
                )
        for attempt_id in sorted(live.trivia_attempts - replayed.trivia_attempts):
            baseline.append(
                NewEvent(
                    user_id=user_id,
                    kind=EventKind.TRIVIA_ATTEMPT_RECORDED,
                    payload={"attempt": TriviaAttempt(attempt_id, user_id).to_payload()},
                    timestamp=at,
                    origin=EventOrigin.BACKFILL,
                )
            )
        difference = live.balance - replayed.balance
        if difference:
            baseline.append(
                NewEvent(
                    user_id=user_id,
                    kind=EventKind.CREDIT_DELTA,
                    payload={
                        "amount": difference,
                        "reason": "backfill_baseline",
                        "metadata": {"logged_balance": replayed.balance},
                    },
                    timestamp=at,
                    origin=EventOrigin.BACKFILL,
                )
            )

        for new_event in baseline:
            self._stamp(tx, new_event)
        if baseline:
            logger.info("Stamped %d baseline event(s) for %s", len(baseline), user_id)
        return len(baseline)

    @staticmethod
    def _stamp(tx: LedgerTransaction, new_event: NewEvent) -> None:
        tx.append(new_event, enforce_monotonic=False, project=False)
