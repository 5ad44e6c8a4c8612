"""
Wipe executor.

Destructive admin resets, gated by a typed confirmation word. A wipe never
deletes aggregate rows directly: it appends ``WipeApplied`` events naming
the exact ids to remove, and projection deletes those rows in the same
transaction. That keeps the event log able to explain the post-wipe state,
and it makes every wipe a rollback barrier.

Scopes:

- ``user_full``: cards, listings (sold by the user or placed on the user's
  cards), trades (either party), trivia attempts, credits reset to 0.
- ``user_inventory_currency``: the same minus trivia attempts.
- ``server_full`` / ``server_inventory_currency``: the per-user wipe for
  every registered user, one user per transaction, followed by a
  server-scope summary event.

Codex unlocks and user records are preserved by every scope.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from economy_ledger.db import credits_repo, inventory_repo, market_repo, trivia_repo, users_repo
from economy_ledger.db.constants import SERVER_SCOPE
from economy_ledger.db.errors import DatabaseError
from economy_ledger.ledger.economy import require_user
from economy_ledger.ledger.errors import (
    ConcurrencyConflict,
    LedgerError,
    PartialFailure,
    ValidationError,
)
from economy_ledger.ledger.events import EventKind, EventOrigin, NewEvent
from economy_ledger.ledger.locks import UserLockManager
from economy_ledger.ledger.store import LedgerStore, LedgerTransaction
from economy_ledger.ledger.types import WipeResult

logger = logging.getLogger(__name__)

_MAX_LOCK_ATTEMPTS = 3


@dataclass
class _WipePlan:
    """Exact ids a user wipe will remove, grouped by the user whose history records them."""

    user_id: str
    card_ids: list[str] = field(default_factory=list)
    listings_by_seller: dict[str, list[str]] = field(default_factory=dict)
    trades_by_user: dict[str, list[str]] = field(default_factory=dict)
    trivia_attempt_ids: list[str] = field(default_factory=list)
    balance: int = 0

    @property
    def participants(self) -> set[str]:
        return {self.user_id} | set(self.listings_by_seller) | set(self.trades_by_user)


def _collect(cursor: sqlite3.Cursor, user_id: str, *, include_trivia: bool) -> _WipePlan:
    plan = _WipePlan(user_id=user_id, balance=credits_repo.get_balance(cursor, user_id))
    plan.card_ids = [card.card_id for card in inventory_repo.list_cards(cursor, user_id)]
    for listing in market_repo.listings_touching_user(cursor, user_id):
        plan.listings_by_seller.setdefault(listing.seller_user_id, []).append(listing.listing_id)
    for row in market_repo.trades_for_user(cursor, user_id):
        plan.trades_by_user.setdefault(user_id, []).append(row["trade_id"])
        other = row["counterparty_user_id"]
        if other == user_id:
            other = row["initiator_user_id"]
        if other != user_id:
            plan.trades_by_user.setdefault(other, []).append(row["trade_id"])
    if include_trivia:
        plan.trivia_attempt_ids = trivia_repo.list_attempt_ids(cursor, user_id)
    return plan


class WipeExecutor:
    """Confirmation-gated destructive resets."""

    def __init__(
        self,
        store: LedgerStore,
        locks: UserLockManager,
        *,
        confirm_word: str = "WIPE",
        server_timeout: float = 0.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.locks = locks
        self.confirm_word = confirm_word
        self.server_timeout = server_timeout
        self._monotonic = monotonic

    def check_confirmation(self, confirm: str | None) -> None:
        """Raise ``ValidationError`` unless ``confirm`` matches the confirmation word."""
        if (confirm or "").strip().lower() != self.confirm_word.lower():
            raise ValidationError(f"Confirmation must be {self.confirm_word!r}")

    # =========================================================================
    # SINGLE USER
    # =========================================================================

    def wipe_user_full(self, user_id: str, confirm: str | None) -> WipeResult:
        self.check_confirmation(confirm)
        return self._wipe_user(user_id, scope="user_full", include_trivia=True)

    def wipe_user_inventory_currency(self, user_id: str, confirm: str | None) -> WipeResult:
        self.check_confirmation(confirm)
        return self._wipe_user(user_id, scope="user_inventory_currency", include_trivia=False)

    def _wipe_user(
        self,
        user_id: str,
        *,
        scope: str,
        include_trivia: bool,
        wipe_id: str | None = None,
    ) -> WipeResult:
        """
        Wipe one user under the locks of the user and every counterpart.

        Counterparts are read first, then locked, then re-read inside the
        transaction; a changed set means a trade or listing landed in
        between, so the scan repeats.
        """
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            participants = _collect(cursor, user_id, include_trivia=include_trivia).participants

        for _ in range(_MAX_LOCK_ATTEMPTS):
            with self.locks.hold(*participants):
                with self.store.transaction() as tx:
                    plan = _collect(tx.cursor, user_id, include_trivia=include_trivia)
                    if plan.participants != participants:
                        participants = plan.participants
                        continue
                    wipe_id = wipe_id or f"wipe-{uuid.uuid4().hex[:16]}"
                    result = self._apply(tx, plan, scope, wipe_id)
            logger.info(
                "Wiped %s (%s): %d card(s), %d listing(s), %d trade(s), "
                "%d trivia attempt(s), %d credit(s) cleared",
                user_id,
                scope,
                result.cards_removed,
                result.listings_removed,
                result.trades_removed,
                result.trivia_attempts_removed,
                result.credits_cleared,
            )
            return result

        raise ConcurrencyConflict(sorted(participants), self.locks.timeout)

    @staticmethod
    def _apply(tx: LedgerTransaction, plan: _WipePlan, scope: str, wipe_id: str) -> WipeResult:
        user_id = plan.user_id

        # Other sellers' listings can sit on this user's cards; drop them first.
        for other_id in sorted(plan.participants - {user_id}):
            tx.append(
                NewEvent(
                    user_id=other_id,
                    kind=EventKind.WIPE_APPLIED,
                    payload={
                        "wipe_id": wipe_id,
                        "scope": scope,
                        "wiped_user_id": user_id,
                        "listing_ids": plan.listings_by_seller.get(other_id, []),
                        "trade_ids": plan.trades_by_user.get(other_id, []),
                    },
                    origin=EventOrigin.WIPE,
                    correlation_id=wipe_id,
                )
            )

        own_listings = plan.listings_by_seller.get(user_id, [])
        own_trades = plan.trades_by_user.get(user_id, [])
        tx.append(
            NewEvent(
                user_id=user_id,
                kind=EventKind.WIPE_APPLIED,
                payload={
                    "wipe_id": wipe_id,
                    "scope": scope,
                    "wiped_user_id": user_id,
                    "card_ids": plan.card_ids,
                    "listing_ids": own_listings,
                    "trade_ids": own_trades,
                    "trivia_attempt_ids": plan.trivia_attempt_ids,
                    "reset_credits": True,
                    "credits_cleared": plan.balance,
                },
                origin=EventOrigin.WIPE,
                correlation_id=wipe_id,
            )
        )
        return WipeResult(
            scope=scope,
            user_id=user_id,
            cards_removed=len(plan.card_ids),
            listings_removed=sum(len(ids) for ids in plan.listings_by_seller.values()),
            trades_removed=len(own_trades),
            trivia_attempts_removed=len(plan.trivia_attempt_ids),
            credits_cleared=plan.balance,
            users_processed=1,
        )

    # =========================================================================
    # SERVER-WIDE
    # =========================================================================

    def wipe_server_full(
        self,
        confirm: str | None,
        *,
        user_ids: Sequence[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> WipeResult:
        self.check_confirmation(confirm)
        return self._wipe_server(
            "server_full", include_trivia=True, user_ids=user_ids, cancel=cancel
        )

    def wipe_server_inventory_currency(
        self,
        confirm: str | None,
        *,
        user_ids: Sequence[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> WipeResult:
        self.check_confirmation(confirm)
        return self._wipe_server(
            "server_inventory_currency", include_trivia=False, user_ids=user_ids, cancel=cancel
        )

    def _wipe_server(
        self,
        scope: str,
        *,
        include_trivia: bool,
        user_ids: Sequence[str] | None,
        cancel: threading.Event | None,
    ) -> WipeResult:
        """
        Wipe every user (or ``user_ids``), one transaction per user.

        Stops between users when ``cancel`` is set or the configured timeout
        elapses, and on any per-user failure; each stop raises
        :exc:`PartialFailure` with the users still pending. Already wiped
        users hold nothing, so re-running over them changes nothing.
        """
        if user_ids is None:
            targets = users_repo.list_user_ids()
        else:
            targets = sorted(set(user_ids))
            with self.store.reader() as cursor:
                for user_id in targets:
                    require_user(cursor, user_id)

        operation = f"wipe_{scope}"
        wipe_id = f"wipe-{uuid.uuid4().hex[:16]}"
        total = WipeResult(scope=scope)
        processed: list[str] = []
        deadline = (
            self._monotonic() + self.server_timeout if self.server_timeout > 0 else None
        )
        logger.info("Starting %s (%s) over %d user(s)", operation, wipe_id, len(targets))

        for index, user_id in enumerate(targets):
            cause: BaseException | str | None = None
            if cancel is not None and cancel.is_set():
                cause = "cancelled"
            elif deadline is not None and self._monotonic() >= deadline:
                cause = f"timed out after {self.server_timeout:g}s"
            if cause is not None:
                logger.warning(
                    "%s stopped before %s: %s (%d pending)",
                    operation,
                    user_id,
                    cause,
                    len(targets) - index,
                )
                raise PartialFailure(
                    operation,
                    processed_users=processed,
                    pending_users=targets[index:],
                    partial=total.to_dict(),
                    cause=cause,
                )
            try:
                total.absorb(
                    self._wipe_user(
                        user_id, scope=scope, include_trivia=include_trivia, wipe_id=wipe_id
                    )
                )
            except (LedgerError, DatabaseError) as exc:
                logger.error("%s failed on %s", operation, user_id, exc_info=True)
                raise PartialFailure(
                    operation,
                    processed_users=processed,
                    pending_users=targets[index:],
                    partial=total.to_dict(),
                    cause=exc,
                ) from exc
            processed.append(user_id)

        self.store.append(
            NewEvent(
                user_id=SERVER_SCOPE,
                kind=EventKind.WIPE_APPLIED,
                payload={"wipe_id": wipe_id, "users": processed, **total.to_dict()},
                origin=EventOrigin.WIPE,
                correlation_id=wipe_id,
            )
        )
        logger.info(
            "%s complete: %d user(s), %d card(s), %d listing(s), %d trade(s), %d credit(s) cleared",
            operation,
            total.users_processed,
            total.cards_removed,
            total.listings_removed,
            total.trades_removed,
            total.credits_cleared,
        )
        return total
