"""Admin token check for the ``/admin`` routes."""

import logging
import secrets

from fastapi import Header, HTTPException

from economy_ledger.config import config

logger = logging.getLogger(__name__)


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    """
    FastAPI dependency guarding admin routes.

    When ``security.admin_token`` is empty the check is disabled (local
    development); otherwise the ``X-Admin-Token`` header must match it.
    """
    expected = config.security.admin_token
    if not expected:
        return
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Rejected admin request with missing or invalid token")
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")
