"""Ledger error taxonomy.

These are rule and coordination failures, distinct from the infrastructure
failures in :mod:`economy_ledger.db.errors`:

- :exc:`ValidationError`: rejected before any side effect (bad confirmation
  word, unknown user, non-monotonic timestamp, insufficient credits).
- :exc:`IncompleteHistoryError`: rollback cannot prove the pre-cutover state.
- :exc:`ConcurrencyConflict`: a per-user lock could not be taken in time.
- :exc:`PartialFailure`: a server-wide operation stopped part way.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any


class LedgerError(Exception):
    """Base exception for ledger rule and coordination failures."""


class ValidationError(LedgerError):
    """Input rejected with no side effects."""


class UnknownUserError(ValidationError):
    """The referenced user is not registered."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Unknown user: {user_id!r}")


class IncompleteHistoryError(LedgerError):
    """
    Raised when live state holds resources that the event log cannot explain.

    Attributes:
        user_id: The user being rolled back.
        resources: Human-readable resource keys (for example
            ``"card:c-17"`` or ``"credits:+500"``).
    """

    def __init__(self, user_id: str, resources: Sequence[str]) -> None:
        self.user_id = user_id
        self.resources = list(resources)
        preview = ", ".join(self.resources[:10])
        more = f" (+{len(self.resources) - 10} more)" if len(self.resources) > 10 else ""
        super().__init__(
            f"History for user {user_id!r} does not explain current state: {preview}{more}. "
            "Run a backfill for a baseline date before rolling back."
        )


class ConcurrencyConflict(LedgerError):
    """A per-user lock was not acquired within the timeout."""

    def __init__(self, user_ids: Iterable[str], timeout: float) -> None:
        self.user_ids = list(user_ids)
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for lock(s) on {', '.join(self.user_ids)}"
        )


class PartialFailure(LedgerError):
    """
    A server-wide operation processed some users but not all.

    Attributes:
        operation: Operation name, e.g. ``"wipe_server_full"``.
        processed_users: Users fully processed before the stop.
        pending_users: Users not processed; pass these back to resume.
        partial: Counts accumulated for the processed users.
        cause: The exception or reason that stopped the run.
    """

    def __init__(
        self,
        operation: str,
        *,
        processed_users: Sequence[str],
        pending_users: Sequence[str],
        partial: dict[str, Any] | None = None,
        cause: BaseException | str | None = None,
    ) -> None:
        self.operation = operation
        self.processed_users = list(processed_users)
        self.pending_users = list(pending_users)
        self.partial = partial or {}
        self.cause = cause
        super().__init__(
            f"{operation} stopped after {len(self.processed_users)} user(s); "
            f"{len(self.pending_users)} pending: {cause}"
        )
