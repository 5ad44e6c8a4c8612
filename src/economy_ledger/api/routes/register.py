"""
Route registration entry point for the FastAPI application.

Each route module exposes a ``router(service)`` factory; this module wires
them onto the app with the shared :class:`LedgerService`.
"""

from fastapi import FastAPI

from economy_ledger.api.routes import admin, economy, health
from economy_ledger.ledger.service import LedgerService


def register_routes(app: FastAPI, service: LedgerService) -> None:
    """Register all API routes with the FastAPI app."""
    app.include_router(health.router)
    app.include_router(admin.router(service))
    app.include_router(economy.router(service))
