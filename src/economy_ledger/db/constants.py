"""Shared database constants for the DB package.

This module centralizes constants consumed by the schema, the repositories
and the ledger layer. Keeping them in one location prevents accidental
divergence between CHECK constraints and runtime validation.
"""

from __future__ import annotations

# Sentinel subject for server-scope audit events. Reserved: no user may take
# this id, so server events never mix with a player's history.
SERVER_SCOPE = "server"

CARD_RARITIES = ("uncommon", "rare", "epic", "legendary")

CARD_FINISHES = ("normal", "holo", "prismatic", "darkMatter")

# regular/holo/prismatic/dark-matter/alt-art/alt-art-holo/collection subset
CODEX_VARIANTS = ("regular", "holo", "prismatic", "darkMatter", "altart", "altart_holo", "boys")

TRADE_STATUSES = ("executed", "reversed")

# Card sources that surface in the operator activity timeline.
TIMELINE_SOURCES = ("pull", "reroll", "trade_up", "prismatic_craft")
