"""
FastAPI backend server for the economy ledger.

This module initializes and configures the FastAPI application. It sets up:
- CORS middleware using the configured origins
- The ledger service that owns the store, locks and integrity engines
- All API route endpoints (economy surface, admin operations, health)
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from economy_ledger import __version__
from economy_ledger.api.routes import register_routes
from economy_ledger.config import config, print_config_summary
from economy_ledger.ledger.service import LedgerService

logger = logging.getLogger(__name__)

# ============================================================================
# APPLICATION FACTORY
# ============================================================================


def create_app(service: LedgerService | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Ledger service to expose; built from ``config`` when omitted.
            Tests pass their own service bound to a temporary database.
    """
    docs = config.docs_should_be_enabled
    application = FastAPI(
        title="Economy Ledger",
        version=__version__,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
    )

    # ========================================================================
    # MIDDLEWARE CONFIGURATION
    # ========================================================================

    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_origins,
        allow_credentials=config.security.cors_allow_credentials,
        allow_methods=config.security.cors_allow_methods,
        allow_headers=config.security.cors_allow_headers,
    )

    # ========================================================================
    # ROUTE REGISTRATION
    # ========================================================================

    register_routes(application, service or LedgerService.from_config(config))
    return application


app = create_app()

# ============================================================================
# SERVER STARTUP
# ============================================================================


def start_server(host: str | None = None, port: int | None = None) -> None:
    """
    Initialize logging and the schema, then serve ``app`` with uvicorn.

    Args:
        host: Interface to bind; defaults to ``config.server.host``.
        port: Port to bind; defaults to ``config.server.port``.
    """
    import uvicorn

    from economy_ledger.db.schema import init_database
    from economy_ledger.logging_config import configure_logging

    configure_logging()
    print_config_summary()
    init_database()
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    logger.info("Starting economy ledger API on %s:%d", bind_host, bind_port)
    uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)


if __name__ == "__main__":
    start_server()
