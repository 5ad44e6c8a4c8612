"""
Pydantic models for API requests and responses.

Models are organized into three groups:
1. Admin request models: rollback, backfill, wipe, credits
2. Economy request models: the gameplay collaborator surface
3. Response models: shapes returned to clients
"""

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field

# ============================================================================
# ADMIN REQUEST MODELS
# ============================================================================


class RollbackRequest(BaseModel):
    """
    Roll a user back to a cutover.

    Attributes:
        user_id: User to roll back
        date: Cutover; a bare date means 00:00:00 UTC on that day
    """

    user_id: str
    date: dt.date | dt.datetime


class RollbackUndoRequest(BaseModel):
    user_id: str


class BackfillRequest(BaseModel):
    """
    Stamp baseline history dated at the start of ``date``.

    Attributes:
        date: Baseline day (YYYY-MM-DD)
        user_id: Limit to one user; omit for every user
    """

    date: dt.date
    user_id: str | None = None


class WipeUserRequest(BaseModel):
    """
    Wipe one user's economic state.

    Attributes:
        user_id: User to wipe
        confirm: Confirmation word (case-insensitive, surrounding whitespace ignored)
    """

    user_id: str
    confirm: str


class WipeServerRequest(BaseModel):
    """
    Wipe every user's economic state.

    Attributes:
        confirm: Confirmation word
        user_ids: Resume a stopped run with its pending users
    """

    confirm: str
    user_ids: list[str] | None = None


class AddCreditsRequest(BaseModel):
    """Admin credit adjustment; ``add`` may be negative."""

    user_id: str
    add: int


class SetCreditsRequest(BaseModel):
    user_id: str
    balance: int = Field(ge=0)


class AddCreditsAllRequest(BaseModel):
    amount: int


# ============================================================================
# ECONOMY REQUEST MODELS
# ============================================================================


class RegisterUserRequest(BaseModel):
    user_id: str
    display_name: str | None = None


class CreditChangeRequest(BaseModel):
    """
    Gameplay credit change.

    Attributes:
        user_id: Affected user
        amount: Positive to earn, negative to spend
        reason: Short machine-readable reason (``quest_reward``, ``pack_purchase``)
        metadata: Free-form context stored on the event
    """

    user_id: str
    amount: int
    reason: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class CardPayload(BaseModel):
    card_id: str | None = None
    character_id: str
    rarity: str
    finish: str = "normal"
    character_name: str = ""
    actor_name: str = ""
    movie_title: str = ""


class AddCardRequest(BaseModel):
    """
    Grant a card instance.

    Attributes:
        user_id: New owner
        card: Card attributes; ``card_id`` is generated when omitted
        source: How it was obtained (``pull``, ``reroll``, ``trade_up``, ``prismatic_craft``)
    """

    user_id: str
    card: CardPayload
    source: str = "pull"


class CodexRequest(BaseModel):
    user_id: str
    character_id: str
    variant: str
    unlocked: bool = True


class TradeRequest(BaseModel):
    """
    Execute a two-party trade.

    The initiator gives ``offered_card_ids`` and ``offered_credits`` and
    receives ``requested_card_ids`` and ``requested_credits``.
    """

    initiator_user_id: str
    counterparty_user_id: str
    offered_card_ids: list[str] = Field(default_factory=list)
    requested_card_ids: list[str] = Field(default_factory=list)
    offered_credits: int = 0
    requested_credits: int = 0


class CreateListingRequest(BaseModel):
    user_id: str
    card_id: str
    asking_price: int


class PurchaseListingRequest(BaseModel):
    buyer_user_id: str


class TriviaAttemptRequest(BaseModel):
    user_id: str
    score: int = 0
    credits_earned: int = 0
    winner_id: str | None = None


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class RollbackResponse(BaseModel):
    """
    Rollback outcome with per-resource counts.

    ``skipped`` lists inverses that no longer applied; ``assumed_resources``
    lists state taken to predate history under the ``assume_existed`` policy.
    """

    success: bool
    message: str
    rollback_id: str
    new_balance: int
    balance_delta: int
    cards_removed: int
    cards_restored: int
    codex_unlocks_removed: int
    codex_unlocks_restored: int
    trades_reversed: int
    listings_removed: int
    listings_restored: int
    trivia_attempts_removed: int
    trivia_attempts_restored: int
    events_reverted: int
    items_reverted: int
    skipped: list[str]
    assumed_resources: list[str]


class RollbackUndoAvailableResponse(BaseModel):
    user_id: str
    available: bool


class RollbackUndoResponse(BaseModel):
    success: bool
    message: str
    rollback_id: str
    new_balance: int
    events_reverted: int
    skipped: list[str]


class BackfillResponse(BaseModel):
    success: bool
    entries_added: int
    users_processed: int
    message: str


class WipeResponse(BaseModel):
    success: bool
    message: str
    scope: str
    user_id: str | None = None
    cards_removed: int
    listings_removed: int
    trades_removed: int
    trivia_attempts_removed: int
    credits_cleared: int
    users_processed: int


class TimelineResponse(BaseModel):
    entries: list[dict[str, Any]]


class VerifyResponse(BaseModel):
    consistent: bool
    reports: list[dict[str, Any]]


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class UserEventsResponse(BaseModel):
    user_id: str
    events: list[dict[str, Any]]
