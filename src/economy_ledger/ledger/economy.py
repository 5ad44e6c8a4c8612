"""
Gameplay-facing economy operations.

These are the collaborator interfaces the rest of the platform uses to
change economic state: credits, cards, codex unlocks, trades, marketplace
listings and trivia attempts. Every operation follows the same sequence:

1. Validate arguments (``ValidationError`` before any side effect).
2. Take the per-user lock(s), sorted, via :class:`UserLockManager`.
3. Open one ledger transaction, re-check state under the lock, append the
   event(s). Projection updates the aggregates in the same transaction.

Two-party operations (trades, marketplace purchases) dual-write one event per
participant, cross-referenced by a shared trade id.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from economy_ledger.db import credits_repo, inventory_repo, market_repo, users_repo
from economy_ledger.db.constants import CARD_FINISHES, CARD_RARITIES, CODEX_VARIANTS, SERVER_SCOPE
from economy_ledger.ledger import mutations
from economy_ledger.ledger.errors import UnknownUserError, ValidationError
from economy_ledger.ledger.events import EventKind, EventOrigin, format_timestamp
from economy_ledger.ledger.locks import UserLockManager
from economy_ledger.ledger.store import LedgerStore, LedgerTransaction
from economy_ledger.ledger.types import Card, Listing, TradeRecord, TriviaAttempt

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def require_user(tx_or_cursor: LedgerTransaction | Any, user_id: str) -> None:
    """Raise :exc:`UnknownUserError` unless ``user_id`` is registered."""
    cursor = getattr(tx_or_cursor, "cursor", tx_or_cursor)
    if not user_id or not users_repo.exists(cursor, user_id):
        raise UnknownUserError(user_id)


def _require_positive(amount: int, what: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"{what} must be a positive integer")
    return amount


class EconomyService:
    """Atomic, per-user-serialized mutations of economic state."""

    def __init__(self, store: LedgerStore, locks: UserLockManager) -> None:
        self.store = store
        self.locks = locks

    # =========================================================================
    # USERS
    # =========================================================================

    def register_user(self, user_id: str, display_name: str | None = None) -> dict:
        """Register a user. Re-registering an existing id is rejected."""
        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationError("user_id is required")
        if user_id == SERVER_SCOPE:
            raise ValidationError(f"{SERVER_SCOPE!r} is a reserved id")
        name = (display_name or user_id).strip() or user_id
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                created_at = format_timestamp(tx.now())
                if not users_repo.insert_user(tx.cursor, user_id, name, created_at):
                    raise ValidationError(f"User {user_id!r} already exists")
        logger.info("Registered user %s", user_id)
        return {"user_id": user_id, "display_name": name, "created_at": created_at}

    def list_user_ids(self) -> list[str]:
        return users_repo.list_user_ids()

    # =========================================================================
    # READS
    # =========================================================================

    def get_balance(self, user_id: str) -> int:
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return credits_repo.get_balance(cursor, user_id)

    def list_cards(self, user_id: str) -> list[Card]:
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return inventory_repo.list_cards(cursor, user_id)

    def list_codex(self, user_id: str) -> list[tuple[str, str]]:
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return inventory_repo.list_codex(cursor, user_id)

    def list_listings(self, user_id: str) -> list[Listing]:
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return market_repo.list_listings(cursor, user_id)

    def summary(self, user_id: str) -> dict[str, Any]:
        """Balance and resource counts for one user."""
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return {
                "user_id": user_id,
                "balance": credits_repo.get_balance(cursor, user_id),
                "cards": [card.to_payload() for card in inventory_repo.list_cards(cursor, user_id)],
                "codex": [list(pair) for pair in inventory_repo.list_codex(cursor, user_id)],
                "listings": [
                    listing.to_payload() for listing in market_repo.list_listings(cursor, user_id)
                ],
                "trades": [dict(row) for row in market_repo.trades_for_user(cursor, user_id)],
            }

    # =========================================================================
    # CREDITS
    # =========================================================================

    def add_credits(
        self,
        user_id: str,
        amount: int,
        reason: str = "credit",
        *,
        metadata: dict[str, Any] | None = None,
        at: datetime | None = None,
        origin: EventOrigin = EventOrigin.GAMEPLAY,
    ) -> int:
        """Credit a user and return the new balance."""
        _require_positive(amount, "amount")
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                mutations.credit(
                    tx, user_id, amount, reason, origin=origin, at=at, metadata=metadata
                )
                return credits_repo.get_balance(tx.cursor, user_id)

    def deduct_credits(
        self,
        user_id: str,
        amount: int,
        reason: str = "debit",
        *,
        metadata: dict[str, Any] | None = None,
        at: datetime | None = None,
        origin: EventOrigin = EventOrigin.GAMEPLAY,
    ) -> int:
        """Debit a user and return the new balance; balances never go negative."""
        _require_positive(amount, "amount")
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                balance = credits_repo.get_balance(tx.cursor, user_id)
                if balance < amount:
                    raise ValidationError(
                        f"Insufficient credits for {user_id!r}: balance {balance}, need {amount}"
                    )
                mutations.credit(
                    tx, user_id, -amount, reason, origin=origin, at=at, metadata=metadata
                )
                return balance - amount

    def set_credits(self, user_id: str, balance: int, *, at: datetime | None = None) -> int:
        """Admin: set an exact balance by appending the difference."""
        if isinstance(balance, bool) or not isinstance(balance, int) or balance < 0:
            raise ValidationError("balance must be a non-negative integer")
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                current = credits_repo.get_balance(tx.cursor, user_id)
                if balance != current:
                    mutations.credit(
                        tx,
                        user_id,
                        balance - current,
                        "admin_set",
                        origin=EventOrigin.ADMIN,
                        at=at,
                        metadata={"previous_balance": current},
                    )
        logger.info("Admin set credits for %s: %d -> %d", user_id, current, balance)
        return balance

    def add_credits_all(self, amount: int, reason: str = "admin_add_all") -> int:
        """Admin: credit every registered user; returns the number of users."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("amount must be a non-negative integer")
        user_ids = users_repo.list_user_ids()
        if amount == 0:
            return len(user_ids)
        for user_id in user_ids:
            self.add_credits(user_id, amount, reason, origin=EventOrigin.ADMIN)
        logger.info("Admin added %d credits to %d user(s)", amount, len(user_ids))
        return len(user_ids)

    # =========================================================================
    # CARDS AND CODEX
    # =========================================================================

    def add_card(
        self,
        user_id: str,
        card: Card | Mapping[str, Any],
        *,
        source: str = "pull",
        at: datetime | None = None,
    ) -> Card:
        """Give a user a new card instance; a missing ``card_id`` is generated."""
        if not isinstance(card, Card):
            data = dict(card)
            data.setdefault("card_id", _new_id("card"))
            card = Card.from_payload(data)
        if not card.card_id or not card.character_id:
            raise ValidationError("card_id and character_id are required")
        if card.rarity not in CARD_RARITIES:
            raise ValidationError(f"Unknown rarity {card.rarity!r}")
        if card.finish not in CARD_FINISHES:
            raise ValidationError(f"Unknown finish {card.finish!r}")

        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                if inventory_repo.get_card_owner(tx.cursor, card.card_id) is not None:
                    raise ValidationError(f"Card {card.card_id!r} already exists")
                if not card.acquired_at:
                    card = Card.from_payload(
                        {**card.to_payload(), "acquired_at": format_timestamp(at or tx.now())}
                    )
                mutations.add_card(tx, user_id, card, source, at=at)
        return card

    def remove_card(
        self,
        user_id: str,
        card_id: str,
        *,
        reason: str = "removed",
        at: datetime | None = None,
    ) -> Card:
        """Remove a card the user holds; its listing, if any, goes with it."""
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                card = self._owned_card(tx, user_id, card_id)
                mutations.remove_card(tx, user_id, card, reason, at=at)
        return card

    def unlock_codex(
        self,
        user_id: str,
        character_id: str,
        variant: str = "regular",
        *,
        at: datetime | None = None,
    ) -> bool:
        """Unlock a codex entry; returns False (and logs nothing) if already unlocked."""
        self._check_variant(variant)
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                if inventory_repo.has_codex(tx.cursor, user_id, character_id, variant):
                    return False
                mutations.set_codex(tx, user_id, character_id, variant, unlocked=True, at=at)
        return True

    def lock_codex(
        self,
        user_id: str,
        character_id: str,
        variant: str = "regular",
        *,
        at: datetime | None = None,
    ) -> bool:
        """Re-lock a codex entry; returns False if it was not unlocked."""
        self._check_variant(variant)
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                if not inventory_repo.has_codex(tx.cursor, user_id, character_id, variant):
                    return False
                mutations.set_codex(
                    tx,
                    user_id,
                    character_id,
                    variant,
                    unlocked=False,
                    origin=EventOrigin.ADMIN,
                    at=at,
                )
        return True

    # =========================================================================
    # TRADES AND MARKETPLACE
    # =========================================================================

    def execute_trade(
        self,
        initiator_id: str,
        counterparty_id: str,
        *,
        offered_card_ids: Sequence[str] = (),
        requested_card_ids: Sequence[str] = (),
        offered_credits: int = 0,
        requested_credits: int = 0,
        source: str = "trade",
        at: datetime | None = None,
    ) -> TradeRecord:
        """
        Execute a trade atomically for both participants.

        The initiator gives ``offered_*``; the counterparty gives
        ``requested_*``. Listings on traded cards are removed first.
        """
        if initiator_id == counterparty_id:
            raise ValidationError("A user cannot trade with themselves")
        if offered_credits < 0 or requested_credits < 0:
            raise ValidationError("Trade credits must be non-negative")
        offered = list(dict.fromkeys(offered_card_ids))
        requested = list(dict.fromkeys(requested_card_ids))
        if not (offered or requested or offered_credits or requested_credits):
            raise ValidationError("A trade must exchange something")

        with self.locks.hold(initiator_id, counterparty_id):
            with self.store.transaction() as tx:
                return self._execute_trade_locked(
                    tx,
                    TradeRecord(
                        trade_id=_new_id("trade"),
                        initiator_user_id=initiator_id,
                        counterparty_user_id=counterparty_id,
                        offered_card_ids=tuple(offered),
                        requested_card_ids=tuple(requested),
                        offered_credits=offered_credits,
                        requested_credits=requested_credits,
                        source=source,
                        created_at=format_timestamp(at or tx.now()),
                    ),
                    at=at,
                )

    def _execute_trade_locked(
        self, tx: LedgerTransaction, trade: TradeRecord, *, at: datetime | None
    ) -> TradeRecord:
        require_user(tx, trade.initiator_user_id)
        require_user(tx, trade.counterparty_user_id)
        offered = [
            self._owned_card(tx, trade.initiator_user_id, card_id)
            for card_id in trade.offered_card_ids
        ]
        requested = [
            self._owned_card(tx, trade.counterparty_user_id, card_id)
            for card_id in trade.requested_card_ids
        ]
        for user_id, owed in (
            (trade.initiator_user_id, trade.offered_credits),
            (trade.counterparty_user_id, trade.requested_credits),
        ):
            balance = credits_repo.get_balance(tx.cursor, user_id)
            if balance < owed:
                raise ValidationError(
                    f"Insufficient credits for {user_id!r}: balance {balance}, need {owed}"
                )

        for card in offered + requested:
            mutations.delist_card(
                tx, card.card_id, "traded", at=at, correlation_id=trade.trade_id
            )
        mutations.trade_sides(
            tx,
            trade,
            EventKind.TRADE_EXECUTED,
            initiator_gives=offered,
            counterparty_gives=requested,
            initiator_pays=trade.offered_credits,
            counterparty_pays=trade.requested_credits,
            at=at,
        )
        logger.info(
            "Trade %s executed: %s <-> %s (%s)",
            trade.trade_id,
            trade.initiator_user_id,
            trade.counterparty_user_id,
            trade.source,
        )
        return trade

    def create_listing(
        self,
        user_id: str,
        card_id: str,
        asking_price: int,
        *,
        at: datetime | None = None,
    ) -> Listing:
        """List a held card on the marketplace."""
        _require_positive(asking_price, "asking_price")
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                self._owned_card(tx, user_id, card_id)
                if market_repo.get_listing_for_card(tx.cursor, card_id) is not None:
                    raise ValidationError(f"Card {card_id!r} is already listed")
                listing = Listing(
                    listing_id=_new_id("listing"),
                    card_id=card_id,
                    seller_user_id=user_id,
                    asking_price=asking_price,
                    created_at=format_timestamp(at or tx.now()),
                )
                mutations.create_listing(tx, listing, at=at)
        return listing

    def remove_listing(
        self, listing_id: str, *, reason: str = "cancelled", at: datetime | None = None
    ) -> Listing:
        """Withdraw a listing."""
        listing = self._find_listing(listing_id)
        with self.locks.hold(listing.seller_user_id):
            with self.store.transaction() as tx:
                current = market_repo.get_listing(tx.cursor, listing_id)
                if current is None:
                    raise ValidationError(f"Listing {listing_id!r} no longer exists")
                mutations.remove_listing(tx, current, reason, at=at)
        return current

    def purchase_listing(
        self, buyer_id: str, listing_id: str, *, at: datetime | None = None
    ) -> TradeRecord:
        """Buy a listed card: the buyer pays the seller and receives the card."""
        listing = self._find_listing(listing_id)
        if listing.seller_user_id == buyer_id:
            raise ValidationError("Sellers cannot buy their own listing")

        with self.locks.hold(buyer_id, listing.seller_user_id):
            with self.store.transaction() as tx:
                current = market_repo.get_listing(tx.cursor, listing_id)
                if current is None or current.seller_user_id != listing.seller_user_id:
                    raise ValidationError(f"Listing {listing_id!r} is no longer available")
                trade = TradeRecord(
                    trade_id=_new_id("trade"),
                    initiator_user_id=buyer_id,
                    counterparty_user_id=current.seller_user_id,
                    requested_card_ids=(current.card_id,),
                    offered_credits=current.asking_price,
                    source="marketplace",
                    created_at=format_timestamp(at or tx.now()),
                )
                # Correlated with the trade so a rollback of the buyer can relist.
                mutations.remove_listing(
                    tx, current, "sold", at=at, correlation_id=trade.trade_id
                )
                return self._execute_trade_locked(tx, trade, at=at)

    # =========================================================================
    # TRIVIA
    # =========================================================================

    def record_trivia_attempt(
        self,
        user_id: str,
        *,
        score: int,
        credits_earned: int = 0,
        winner_id: str | None = None,
        at: datetime | None = None,
    ) -> TriviaAttempt:
        """Record a completed trivia round and pay out its reward."""
        if score < 0 or credits_earned < 0:
            raise ValidationError("score and credits_earned must be non-negative")
        with self.locks.hold(user_id):
            with self.store.transaction() as tx:
                require_user(tx, user_id)
                attempt = TriviaAttempt(
                    attempt_id=_new_id("trivia"),
                    user_id=user_id,
                    score=score,
                    credits_earned=credits_earned,
                    winner_id=winner_id,
                    completed_at=format_timestamp(at or tx.now()),
                )
                mutations.set_trivia_attempt(tx, attempt, recorded=True, at=at)
                if credits_earned:
                    mutations.credit(
                        tx,
                        user_id,
                        credits_earned,
                        "trivia",
                        at=at,
                        metadata={"attempt_id": attempt.attempt_id},
                    )
        return attempt

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _owned_card(tx: LedgerTransaction, user_id: str, card_id: str) -> Card:
        if inventory_repo.get_card_owner(tx.cursor, card_id) != user_id:
            raise ValidationError(f"User {user_id!r} does not hold card {card_id!r}")
        card = inventory_repo.get_card(tx.cursor, card_id)
        if card is None:
            raise ValidationError(f"Card {card_id!r} not found")
        return card

    @staticmethod
    def _check_variant(variant: str) -> None:
        if variant not in CODEX_VARIANTS:
            raise ValidationError(f"Unknown codex variant {variant!r}")

    def _find_listing(self, listing_id: str) -> Listing:
        with self.store.reader() as cursor:
            listing = market_repo.get_listing(cursor, listing_id)
        if listing is None:
            raise ValidationError(f"Listing {listing_id!r} not found")
        return listing
