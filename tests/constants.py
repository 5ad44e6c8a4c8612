"""
Shared test constants.

This module provides constants that are used across multiple test files.
Dates are fixed so backdated histories read the same in every test.
"""

from datetime import date

ADMIN_TOKEN = "test-admin-token-9x7"

WIPE_WORD = "WIPE"

# Baseline day for backfills; earlier than every seeded gameplay event.
BASELINE_DAY = date(2024, 1, 1)

# Cutover used by most rollback scenarios.
CUTOVER_DAY = date(2024, 1, 4)

# Timestamp used for aggregate rows written without any event.
UNTRACKED_AT = "2023-12-01T00:00:00.000000Z"
