"""SQLite persistence for the event log and the materialized aggregates."""
