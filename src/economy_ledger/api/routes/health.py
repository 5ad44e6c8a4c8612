"""Health and root endpoints.

The version string is read from ``economy_ledger.__version__``, resolved at
import time via ``importlib.metadata``.
"""

from fastapi import APIRouter

from economy_ledger import __version__

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint showing API identity and current version."""
    return {"message": "Economy Ledger API", "version": __version__}


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
