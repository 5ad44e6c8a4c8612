"""Transaction-level mutation primitives.

Each helper appends the event(s) for one resource change on an open
:class:`~economy_ledger.ledger.store.LedgerTransaction`; projection then
updates the aggregates. Helpers do not validate ownership or balances and
do not take locks. Those are the caller's job (``economy``, ``rollback``,
``wipe``), which keeps gameplay and correction paths writing identical
event shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from economy_ledger.db import market_repo
from economy_ledger.ledger.events import Event, EventKind, EventOrigin, NewEvent
from economy_ledger.ledger.store import LedgerTransaction
from economy_ledger.ledger.types import Card, Listing, TradeRecord, TriviaAttempt


def credit(
    tx: LedgerTransaction,
    user_id: str,
    amount: int,
    reason: str,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Event:
    """Append a signed ``CreditDelta``."""
    return tx.append(
        NewEvent(
            user_id=user_id,
            kind=EventKind.CREDIT_DELTA,
            payload={"amount": int(amount), "reason": reason, "metadata": metadata or {}},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def add_card(
    tx: LedgerTransaction,
    user_id: str,
    card: Card,
    source: str,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event:
    return tx.append(
        NewEvent(
            user_id=user_id,
            kind=EventKind.CARD_ADDED,
            payload={"card": card.to_payload(), "source": source},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def remove_listing(
    tx: LedgerTransaction,
    listing: Listing,
    reason: str,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event:
    """Append ``ListingRemoved`` on the seller's history."""
    return tx.append(
        NewEvent(
            user_id=listing.seller_user_id,
            kind=EventKind.LISTING_REMOVED,
            payload={"listing": listing.to_payload(), "reason": reason},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def delist_card(
    tx: LedgerTransaction,
    card_id: str,
    reason: str,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event | None:
    """Remove the listing on a card, if there is one."""
    listing = market_repo.get_listing_for_card(tx.cursor, card_id)
    if listing is None:
        return None
    return remove_listing(
        tx, listing, reason, origin=origin, at=at, correlation_id=correlation_id
    )


def remove_card(
    tx: LedgerTransaction,
    user_id: str,
    card: Card,
    reason: str,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> list[Event]:
    """Append ``CardRemoved``, preceded by ``ListingRemoved`` when the card is listed."""
    events = []
    delisted = delist_card(
        tx, card.card_id, reason, origin=origin, at=at, correlation_id=correlation_id
    )
    if delisted is not None:
        events.append(delisted)
    events.append(
        tx.append(
            NewEvent(
                user_id=user_id,
                kind=EventKind.CARD_REMOVED,
                payload={"card": card.to_payload(), "reason": reason},
                timestamp=at,
                origin=origin,
                correlation_id=correlation_id,
            )
        )
    )
    return events


def set_codex(
    tx: LedgerTransaction,
    user_id: str,
    character_id: str,
    variant: str,
    *,
    unlocked: bool,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event:
    """Append ``CodexUnlocked`` or ``CodexLocked``."""
    return tx.append(
        NewEvent(
            user_id=user_id,
            kind=EventKind.CODEX_UNLOCKED if unlocked else EventKind.CODEX_LOCKED,
            payload={"character_id": character_id, "variant": variant},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def create_listing(
    tx: LedgerTransaction,
    listing: Listing,
    *,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event:
    return tx.append(
        NewEvent(
            user_id=listing.seller_user_id,
            kind=EventKind.LISTING_CREATED,
            payload={"listing": listing.to_payload()},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def set_trivia_attempt(
    tx: LedgerTransaction,
    attempt: TriviaAttempt,
    *,
    recorded: bool,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> Event:
    """Append ``TriviaAttemptRecorded`` or ``TriviaAttemptRemoved``."""
    kind = EventKind.TRIVIA_ATTEMPT_RECORDED if recorded else EventKind.TRIVIA_ATTEMPT_REMOVED
    return tx.append(
        NewEvent(
            user_id=attempt.user_id,
            kind=kind,
            payload={"attempt": attempt.to_payload()},
            timestamp=at,
            origin=origin,
            correlation_id=correlation_id,
        )
    )


def trade_sides(
    tx: LedgerTransaction,
    trade: TradeRecord,
    kind: EventKind,
    *,
    initiator_gives: list[Card],
    counterparty_gives: list[Card],
    initiator_pays: int,
    counterparty_pays: int,
    origin: EventOrigin = EventOrigin.GAMEPLAY,
    at: datetime | None = None,
    correlation_id: str | None = None,
) -> tuple[Event, Event]:
    """
    Dual-write a trade movement: one event per participant.

    Both events carry the same ``trade_id`` and mirror each other
    (one side's ``cards_out`` is the other's ``cards_in``). For
    ``TradeReversed`` the caller passes the movement that undoes the trade,
    which may be smaller than the original when some items have since moved
    on.
    """
    correlation = correlation_id or trade.trade_id
    given = [card.to_payload() for card in initiator_gives]
    received = [card.to_payload() for card in counterparty_gives]
    initiator_event = tx.append(
        NewEvent(
            user_id=trade.initiator_user_id,
            kind=kind,
            payload={
                "trade_id": trade.trade_id,
                "trade": trade.to_payload(),
                "side": "initiator",
                "counterpart_user_id": trade.counterparty_user_id,
                "cards_out": given,
                "cards_in": received,
                "credits_out": initiator_pays,
                "credits_in": counterparty_pays,
            },
            timestamp=at,
            origin=origin,
            correlation_id=correlation,
        )
    )
    counterparty_event = tx.append(
        NewEvent(
            user_id=trade.counterparty_user_id,
            kind=kind,
            payload={
                "trade_id": trade.trade_id,
                "trade": trade.to_payload(),
                "side": "counterparty",
                "counterpart_user_id": trade.initiator_user_id,
                "cards_out": received,
                "cards_in": given,
                "credits_out": counterparty_pays,
                "credits_in": initiator_pays,
            },
            timestamp=at,
            origin=origin,
            correlation_id=correlation,
        )
    )
    return initiator_event, counterparty_event
