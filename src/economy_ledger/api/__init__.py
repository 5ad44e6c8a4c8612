"""HTTP API for the economy ledger (FastAPI)."""
