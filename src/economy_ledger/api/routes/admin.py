"""Admin endpoints: rollback, backfill, wipe, timeline, verification and credits."""

import datetime as dt
import logging

from fastapi import APIRouter, Depends

from economy_ledger.api.auth import require_admin
from economy_ledger.api.models import (
    AddCreditsAllRequest,
    AddCreditsRequest,
    BackfillRequest,
    BackfillResponse,
    BalanceResponse,
    RollbackRequest,
    RollbackResponse,
    RollbackUndoAvailableResponse,
    RollbackUndoRequest,
    RollbackUndoResponse,
    SetCreditsRequest,
    TimelineResponse,
    VerifyResponse,
    WipeResponse,
    WipeServerRequest,
    WipeUserRequest,
)
from economy_ledger.api.routes.utils import ledger_errors
from economy_ledger.ledger.events import EventOrigin, as_instant, format_timestamp
from economy_ledger.ledger.service import LedgerService
from economy_ledger.ledger.types import WipeResult

logger = logging.getLogger(__name__)


def _cutover_label(value: dt.date | dt.datetime) -> str:
    """``YYYY-MM-DD`` for day cutovers, the full timestamp otherwise."""
    instant = as_instant(value)
    if instant.time() == dt.time.min:
        return instant.date().isoformat()
    return format_timestamp(instant)


def _wipe_response(result: WipeResult, label: str) -> WipeResponse:
    message = (
        f"{label}: {result.cards_removed} card(s), {result.listings_removed} listing(s), "
        f"{result.trades_removed} trade(s), {result.trivia_attempts_removed} trivia attempt(s) "
        f"removed; {result.credits_cleared} credit(s) cleared"
    )
    return WipeResponse(success=True, message=message, **result.to_dict())


def router(service: LedgerService) -> APIRouter:
    """Build the admin router around the ledger service."""
    api = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    @api.post("/rollback", response_model=RollbackResponse)
    def rollback_user(request: RollbackRequest):
        """Roll a user back to the given date (00:00 UTC) or instant."""
        with ledger_errors():
            result = service.rollback.rollback_user(request.user_id, request.date)
        return RollbackResponse(
            success=True,
            message=result.message(_cutover_label(request.date)),
            rollback_id=result.rollback_id,
            new_balance=result.new_balance,
            balance_delta=result.balance_delta,
            items_reverted=result.items_reverted,
            events_reverted=result.events_reverted,
            skipped=result.skipped,
            assumed_resources=result.assumed_resources,
            **result.counts(),
        )

    @api.get("/rollback/undo", response_model=RollbackUndoAvailableResponse)
    def rollback_undo_available(user_id: str):
        with ledger_errors():
            available = service.rollback.has_rollback_undo_available(user_id)
        return RollbackUndoAvailableResponse(user_id=user_id, available=available)

    @api.post("/rollback/undo", response_model=RollbackUndoResponse)
    def undo_rollback(request: RollbackUndoRequest):
        """Undo the user's most recent rollback, if nothing has happened since."""
        with ledger_errors():
            result = service.rollback.undo_rollback(request.user_id)
        return RollbackUndoResponse(
            success=True,
            message=(
                f"Undid rollback {result.rollback_id}. Credits: {result.new_balance}, "
                f"{result.events_reverted} event(s) reverted."
            ),
            rollback_id=result.rollback_id,
            new_balance=result.new_balance,
            events_reverted=result.events_reverted,
            skipped=list(result.skipped),
        )

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    @api.post("/backfill-codex", response_model=BackfillResponse)
    def backfill_codex(request: BackfillRequest):
        with ledger_errors():
            result = service.backfill.backfill_codex(request.date, request.user_id)
        return BackfillResponse(
            success=True,
            entries_added=result.entries_added,
            users_processed=result.users_processed,
            message=result.message,
        )

    @api.post("/backfill-inventory", response_model=BackfillResponse)
    def backfill_inventory(request: BackfillRequest):
        with ledger_errors():
            result = service.backfill.backfill_inventory(request.date, request.user_id)
        return BackfillResponse(
            success=True,
            entries_added=result.entries_added,
            users_processed=result.users_processed,
            message=result.message,
        )

    # ------------------------------------------------------------------
    # Wipe
    # ------------------------------------------------------------------

    @api.post("/wipe/user", response_model=WipeResponse)
    def wipe_user(request: WipeUserRequest):
        """Full wipe of one user: inventory, listings, trades, trivia, credits."""
        with ledger_errors():
            result = service.wipe.wipe_user_full(request.user_id, request.confirm)
        return _wipe_response(result, f"Wiped user {request.user_id}")

    @api.post("/wipe/user-inventory-currency", response_model=WipeResponse)
    def wipe_user_inventory_currency(request: WipeUserRequest):
        with ledger_errors():
            result = service.wipe.wipe_user_inventory_currency(request.user_id, request.confirm)
        return _wipe_response(result, f"Wiped inventory and currency of {request.user_id}")

    @api.post("/wipe/server", response_model=WipeResponse)
    def wipe_server(request: WipeServerRequest):
        with ledger_errors():
            result = service.wipe.wipe_server_full(request.confirm, user_ids=request.user_ids)
        return _wipe_response(result, f"Wiped {result.users_processed} user(s)")

    @api.post("/wipe/server-inventory-currency", response_model=WipeResponse)
    def wipe_server_inventory_currency(request: WipeServerRequest):
        with ledger_errors():
            result = service.wipe.wipe_server_inventory_currency(
                request.confirm, user_ids=request.user_ids
            )
        return _wipe_response(
            result, f"Wiped inventory and currency of {result.users_processed} user(s)"
        )

    # ------------------------------------------------------------------
    # Timeline and verification
    # ------------------------------------------------------------------

    @api.get("/timeline", response_model=TimelineResponse)
    def get_timeline(
        user_id: str | None = None,
        since: dt.datetime | None = None,
        limit: int | None = 100,
    ):
        """Recent epic/legendary acquisitions, newest first."""
        with ledger_errors():
            entries = service.timeline.list_timeline(user_id=user_id, since=since, limit=limit)
        return TimelineResponse(entries=[entry.to_dict() for entry in entries])

    @api.get("/verify", response_model=VerifyResponse)
    def verify(user_id: str | None = None):
        """Replay history and compare it with the live aggregates."""
        with ledger_errors():
            if user_id is not None:
                reports = [service.verify_user(user_id)]
            else:
                reports = service.verify_all()
        return VerifyResponse(
            consistent=all(report.consistent for report in reports),
            reports=[report.to_dict() for report in reports],
        )

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    @api.patch("/credits", response_model=BalanceResponse)
    def add_credits(request: AddCreditsRequest):
        """Add (or, with a negative value, deduct) credits."""
        with ledger_errors():
            if request.add >= 0:
                balance = (
                    service.economy.add_credits(
                        request.user_id, request.add, "admin_add", origin=EventOrigin.ADMIN
                    )
                    if request.add
                    else service.economy.get_balance(request.user_id)
                )
            else:
                balance = service.economy.deduct_credits(
                    request.user_id, -request.add, "admin_deduct", origin=EventOrigin.ADMIN
                )
        logger.info("Admin credit adjustment for %s: %+d", request.user_id, request.add)
        return BalanceResponse(user_id=request.user_id, balance=balance)

    @api.put("/credits", response_model=BalanceResponse)
    def set_credits(request: SetCreditsRequest):
        with ledger_errors():
            balance = service.economy.set_credits(request.user_id, request.balance)
        return BalanceResponse(user_id=request.user_id, balance=balance)

    @api.post("/credits/add-all")
    def add_credits_all(request: AddCreditsAllRequest):
        with ledger_errors():
            users = service.economy.add_credits_all(request.amount)
        return {
            "success": True,
            "users_credited": users,
            "message": f"Added {request.amount} credits to {users} user(s)",
        }

    return api
