"""
Test helpers for building ledger histories.

Gameplay helpers go through the public economy service with explicit ``at``
instants, appended in chronological order per user. The ``seed_untracked_*``
helpers write aggregate rows directly, reproducing state that predates event
logging.
"""

from datetime import UTC, datetime

from economy_ledger.db import credits_repo, inventory_repo
from economy_ledger.db.connection import connection_scope
from economy_ledger.ledger.types import Card
from tests.constants import UNTRACKED_AT


def day(d: int, hour: int = 12, month: int = 1, year: int = 2024) -> datetime:
    """Aware UTC instant on a day of January 2024 (noon by default)."""
    return datetime(year, month, d, hour, tzinfo=UTC)


def make_card(card_id: str, rarity: str = "rare", **extra) -> dict:
    """Card attributes as accepted by ``EconomyService.add_card``."""
    return {
        "card_id": card_id,
        "character_id": extra.pop("character_id", f"char-{card_id}"),
        "rarity": rarity,
        "character_name": extra.pop("character_name", f"Character {card_id}"),
        **extra,
    }


def seed_untracked_state(
    user_id: str, *, balance: int = 0, card_ids: tuple[str, ...] = ()
) -> None:
    """Write balance and card rows directly, bypassing the event log."""
    with connection_scope(write=True) as conn:
        cursor = conn.cursor()
        if balance:
            credits_repo.set_balance(cursor, user_id, balance, UNTRACKED_AT)
        for card_id in card_ids:
            inventory_repo.put_card(
                cursor,
                user_id,
                Card(card_id, f"char-{card_id}", "rare", acquired_at=UNTRACKED_AT),
            )


def seed_untracked_codex(user_id: str, pairs: list[tuple[str, str]]) -> None:
    """Insert codex unlocks with no ``CodexUnlocked`` event."""
    with connection_scope(write=True) as conn:
        cursor = conn.cursor()
        for character_id, variant in pairs:
            inventory_repo.insert_codex(cursor, user_id, character_id, variant, UNTRACKED_AT)

