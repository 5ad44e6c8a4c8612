"""API route modules."""

from economy_ledger.api.routes.register import register_routes

__all__ = ["register_routes"]
