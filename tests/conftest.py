"""
Shared pytest fixtures for the economy ledger test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary test databases wired through ``use_test_database``
- A ``LedgerService`` bound to the temporary database
- FastAPI TestClient instances
- Registered sample users

Every fixture is function-scoped so each test starts from an empty ledger.
"""

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from economy_ledger.config import LedgerSettings, config, use_test_database
from economy_ledger.db.schema import init_database
from economy_ledger.ledger.service import LedgerService

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """
    Create a temporary database file for testing.

    Yields:
        Path to temporary database file

    Cleanup:
        Removes temporary database after test completes
    """
    temp_dir = tempfile.mkdtemp()
    temp_db = Path(temp_dir) / "test_economy.db"

    with use_test_database(temp_db):
        yield temp_db

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="function")
def test_db(temp_db_path: Path) -> Generator[None, None, None]:
    """Initialize a test database with schema but no data."""
    init_database()
    yield


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def ledger_service(test_db) -> LedgerService:
    """Ledger service with default settings (``fail`` history policy)."""
    return LedgerService(LedgerSettings(lock_timeout_seconds=2.0))


@pytest.fixture(scope="function")
def assume_existed_service(test_db) -> LedgerService:
    """Ledger service that assumes unexplained state predates history."""
    return LedgerService(
        LedgerSettings(lock_timeout_seconds=2.0, missing_history_policy="assume_existed")
    )


@pytest.fixture(scope="function")
def users(ledger_service: LedgerService) -> list[str]:
    """Register alice, bob and carol."""
    names = ["alice", "bob", "carol"]
    for name in names:
        ledger_service.economy.register_user(name, name.title())
    return names


@pytest.fixture(scope="function")
def test_client(ledger_service: LedgerService) -> Generator[TestClient, None, None]:
    """
    FastAPI test client bound to the temporary database.

    The admin token is cleared so admin routes are reachable without a
    header; auth tests set it explicitly.
    """
    from economy_ledger.api.server import create_app

    original_token = config.security.admin_token
    config.security.admin_token = ""
    try:
        yield TestClient(create_app(ledger_service))
    finally:
        config.security.admin_token = original_token
