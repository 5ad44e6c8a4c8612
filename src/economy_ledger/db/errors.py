"""Infrastructure failures raised by the DB layer.

Rule violations (insufficient credits, unknown users, incomplete history) live
in ``economy_ledger.ledger.errors``. Everything here means SQLite itself let us
down: the API maps these to a generic 500 and logs the operation identifier.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn


@dataclass(slots=True)
class DatabaseOperationContext:
    """Which repository operation failed, e.g. ``"events.fetch_page"``, plus free-form details."""

    operation: str
    details: str | None = None

    def describe(self) -> str:
        return f"{self.operation}: {self.details}" if self.details else self.operation


class DatabaseError(RuntimeError):
    """Base exception for DB-layer failures."""


class DatabaseOperationError(DatabaseError):
    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(context.describe())
        self.context = context
        self.cause = cause


class DatabaseReadError(DatabaseOperationError):
    """A query or connection failure while reading."""


class DatabaseWriteError(DatabaseOperationError):
    """A failure inside a write transaction; the transaction was rolled back."""


def _reraise_as(
    error_cls: type[DatabaseOperationError],
    operation: str,
    exc: Exception,
    details: str | None,
) -> NoReturn:
    # Already typed further down the stack: keep the innermost context.
    if isinstance(exc, DatabaseError):
        raise exc
    context = DatabaseOperationContext(operation=operation, details=details)
    raise error_cls(context=context, cause=exc) from exc


def raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    _reraise_as(DatabaseReadError, operation, exc, details)


def raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    _reraise_as(DatabaseWriteError, operation, exc, details)
