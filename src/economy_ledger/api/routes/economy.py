"""Economy endpoints: the gameplay-facing mutation surface and user reads."""

import datetime as dt

from fastapi import APIRouter

from economy_ledger.api.models import (
    AddCardRequest,
    BalanceResponse,
    CodexRequest,
    CreateListingRequest,
    CreditChangeRequest,
    PurchaseListingRequest,
    RegisterUserRequest,
    TradeRequest,
    TriviaAttemptRequest,
    UserEventsResponse,
)
from economy_ledger.api.routes.utils import ledger_errors
from economy_ledger.ledger.economy import require_user
from economy_ledger.ledger.service import LedgerService


def router(service: LedgerService) -> APIRouter:
    """Build the economy router around the ledger service."""
    api = APIRouter()
    economy = service.economy

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @api.post("/users", status_code=201)
    def register_user(request: RegisterUserRequest):
        with ledger_errors():
            return economy.register_user(request.user_id, request.display_name)

    @api.get("/users/{user_id}/economy")
    def get_user_economy(user_id: str):
        """Balance, cards, codex, listings and trades of one user."""
        with ledger_errors():
            return economy.summary(user_id)

    @api.get("/users/{user_id}/events", response_model=UserEventsResponse)
    def get_user_events(user_id: str, since: dt.datetime | None = None, limit: int = 200):
        """A user's event history in log order."""
        with ledger_errors():
            with service.store.reader() as cursor:
                require_user(cursor, user_id)
            events = []
            for event in service.store.query(user_id, from_time=since):
                events.append(event.to_dict())
                if len(events) >= limit:
                    break
        return UserEventsResponse(user_id=user_id, events=events)

    # ------------------------------------------------------------------
    # Credits, cards, codex
    # ------------------------------------------------------------------

    @api.post("/economy/credits", response_model=BalanceResponse)
    def change_credits(request: CreditChangeRequest):
        """Earn (positive ``amount``) or spend (negative ``amount``) credits."""
        with ledger_errors():
            if request.amount >= 0:
                balance = economy.add_credits(
                    request.user_id, request.amount, request.reason, metadata=request.metadata
                )
            else:
                balance = economy.deduct_credits(
                    request.user_id, -request.amount, request.reason, metadata=request.metadata
                )
        return BalanceResponse(user_id=request.user_id, balance=balance)

    @api.post("/economy/cards", status_code=201)
    def add_card(request: AddCardRequest):
        card_data = request.card.model_dump(exclude_none=True)
        with ledger_errors():
            card = economy.add_card(request.user_id, card_data, source=request.source)
        return {"user_id": request.user_id, "card": card.to_payload()}

    @api.delete("/economy/cards/{card_id}")
    def remove_card(card_id: str, user_id: str):
        with ledger_errors():
            card = economy.remove_card(user_id, card_id)
        return {"success": True, "card": card.to_payload()}

    @api.post("/economy/codex")
    def set_codex(request: CodexRequest):
        """Unlock (default) or re-lock a codex entry."""
        with ledger_errors():
            if request.unlocked:
                changed = economy.unlock_codex(
                    request.user_id, request.character_id, request.variant
                )
            else:
                changed = economy.lock_codex(request.user_id, request.character_id, request.variant)
        return {"success": True, "changed": changed}

    # ------------------------------------------------------------------
    # Trades and marketplace
    # ------------------------------------------------------------------

    @api.post("/economy/trades", status_code=201)
    def execute_trade(request: TradeRequest):
        with ledger_errors():
            trade = economy.execute_trade(
                request.initiator_user_id,
                request.counterparty_user_id,
                offered_card_ids=request.offered_card_ids,
                requested_card_ids=request.requested_card_ids,
                offered_credits=request.offered_credits,
                requested_credits=request.requested_credits,
            )
        return {"success": True, "trade": trade.to_payload()}

    @api.post("/economy/listings", status_code=201)
    def create_listing(request: CreateListingRequest):
        with ledger_errors():
            listing = economy.create_listing(request.user_id, request.card_id, request.asking_price)
        return {"success": True, "listing": listing.to_payload()}

    @api.delete("/economy/listings/{listing_id}")
    def remove_listing(listing_id: str):
        with ledger_errors():
            listing = economy.remove_listing(listing_id)
        return {"success": True, "listing": listing.to_payload()}

    @api.post("/economy/listings/{listing_id}/purchase")
    def purchase_listing(listing_id: str, request: PurchaseListingRequest):
        with ledger_errors():
            trade = economy.purchase_listing(request.buyer_user_id, listing_id)
        return {"success": True, "trade": trade.to_payload()}

    # ------------------------------------------------------------------
    # Trivia
    # ------------------------------------------------------------------

    @api.post("/economy/trivia-attempts", status_code=201)
    def record_trivia_attempt(request: TriviaAttemptRequest):
        with ledger_errors():
            attempt = economy.record_trivia_attempt(
                request.user_id,
                score=request.score,
                credits_earned=request.credits_earned,
                winner_id=request.winner_id,
            )
        return {"success": True, "attempt": attempt.to_payload()}

    return api
