"""Shared helpers for API route modules."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from economy_ledger.db.errors import DatabaseError
from economy_ledger.ledger.errors import (
    ConcurrencyConflict,
    IncompleteHistoryError,
    PartialFailure,
    UnknownUserError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@contextmanager
def ledger_errors() -> Iterator[None]:
    """
    Translate ledger and database failures into HTTP errors.

    ``ValidationError`` -> 400, unknown user -> 404, incomplete history and
    lock conflicts -> 409, partial server-wide failures and database
    failures -> 500. Structured fields travel in ``detail``.
    """
    try:
        yield
    except UnknownUserError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IncompleteHistoryError as exc:
        raise HTTPException(
            status_code=409,
            detail={"message": str(exc), "user_id": exc.user_id, "resources": exc.resources},
        ) from exc
    except ConcurrencyConflict as exc:
        raise HTTPException(
            status_code=409, detail={"message": str(exc), "user_ids": exc.user_ids}
        ) from exc
    except PartialFailure as exc:
        raise HTTPException(
            status_code=500,
            detail={
                "message": str(exc),
                "operation": exc.operation,
                "processed_users": exc.processed_users,
                "pending_users": exc.pending_users,
                "partial": exc.partial,
                "cause": str(exc.cause),
            },
        ) from exc
    except DatabaseError as exc:
        logger.error("Database failure: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Database error") from exc
