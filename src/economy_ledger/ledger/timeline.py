"""Activity timeline: recent economically significant acquisitions."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import date, datetime

from economy_ledger.config import LedgerSettings
from economy_ledger.db import events_repo
from economy_ledger.db.constants import TIMELINE_SOURCES
from economy_ledger.ledger.errors import ValidationError
from economy_ledger.ledger.events import as_instant, format_timestamp
from economy_ledger.ledger.types import TimelineEntry

logger = logging.getLogger(__name__)


class ActivityTimelineReader:
    """Read-only view over ``CardAdded`` events from pulls and crafts."""

    def __init__(
        self,
        rarities: Sequence[str] | None = None,
        sources: Sequence[str] = TIMELINE_SOURCES,
    ) -> None:
        self.rarities = tuple(LedgerSettings().timeline_rarities if rarities is None else rarities)
        self.sources = tuple(sources)

    def list_timeline(
        self,
        user_id: str | None = None,
        since: date | datetime | None = None,
        limit: int | None = None,
    ) -> list[TimelineEntry]:
        """
        Newest-first acquisitions of the configured rarities.

        Args:
            user_id: Only this user's acquisitions.
            since: Only acquisitions at or after this instant (a date means
                the start of that UTC day).
            limit: Maximum number of entries.
        """
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be a positive integer")
        rows = events_repo.fetch_timeline_rows(
            sources=self.sources,
            rarities=self.rarities,
            user_id=user_id,
            since=format_timestamp(as_instant(since)) if since is not None else None,
            limit=limit,
        )
        entries = []
        for row in rows:
            payload = json.loads(row["payload"])
            card = payload["card"]
            entries.append(
                TimelineEntry(
                    event_id=row["id"],
                    timestamp=row["timestamp"],
                    user_id=row["user_id"],
                    user_name=row["display_name"] or row["user_id"],
                    source=payload["source"],
                    card_id=card["card_id"],
                    character_id=card["character_id"],
                    character_name=card.get("character_name", ""),
                    actor_name=card.get("actor_name", ""),
                    movie_title=card.get("movie_title", ""),
                    rarity=card["rarity"],
                    finish=card.get("finish", "normal"),
                )
            )
        logger.debug("Timeline query returned %d entr(ies)", len(entries))
        return entries
