"""
Ledger service: one object wiring the store, the lock pool and the engines.

The API and CLI build a single :class:`LedgerService` from configuration and
reach every operation through it:

    service = LedgerService.from_config(config)
    service.economy.add_credits("u-1", 200, "quest_reward")
    service.rollback.rollback_user("u-1", date(2024, 1, 4))

Components share one :class:`UserLockManager`, so gameplay mutations and
admin corrections for the same user are serialized against each other.
"""

from __future__ import annotations

import logging

from economy_ledger.config import LedgerSettings, ServerConfig
from economy_ledger.db import users_repo
from economy_ledger.ledger import replay
from economy_ledger.ledger.backfill import BackfillStamper
from economy_ledger.ledger.economy import EconomyService, require_user
from economy_ledger.ledger.events import utc_now
from economy_ledger.ledger.locks import UserLockManager
from economy_ledger.ledger.rollback import RollbackEngine
from economy_ledger.ledger.store import Clock, LedgerStore
from economy_ledger.ledger.timeline import ActivityTimelineReader
from economy_ledger.ledger.wipe import WipeExecutor

logger = logging.getLogger(__name__)


class LedgerService:
    """Facade over the economy, rollback, backfill, wipe and timeline components."""

    def __init__(self, settings: LedgerSettings | None = None, clock: Clock = utc_now) -> None:
        self.settings = settings or LedgerSettings()
        self.store = LedgerStore(
            clock=clock,
            clock_skew_seconds=self.settings.clock_skew_seconds,
            page_size=self.settings.query_page_size,
        )
        self.locks = UserLockManager(timeout=self.settings.lock_timeout_seconds)
        self.economy = EconomyService(self.store, self.locks)
        self.rollback = RollbackEngine(
            self.store,
            self.locks,
            missing_history_policy=self.settings.missing_history_policy,
        )
        self.backfill = BackfillStamper(self.store, self.locks)
        self.wipe = WipeExecutor(
            self.store,
            self.locks,
            confirm_word=self.settings.wipe_confirm_word,
            server_timeout=self.settings.server_wipe_timeout_seconds,
        )
        self.timeline = ActivityTimelineReader(self.settings.timeline_rarities)

    @classmethod
    def from_config(cls, cfg: ServerConfig) -> LedgerService:
        return cls(cfg.ledger)

    def verify_user(self, user_id: str) -> replay.ReplayReport:
        """Replay one user's history against the live aggregates."""
        with self.store.reader() as cursor:
            require_user(cursor, user_id)
            return replay.verify_user(cursor, user_id)

    def verify_all(self) -> list[replay.ReplayReport]:
        """Replay every registered user; inconsistent users are logged."""
        reports = []
        with self.store.reader() as cursor:
            for user_id in users_repo.list_user_ids(cursor):
                report = replay.verify_user(cursor, user_id)
                if not report.consistent:
                    logger.warning(
                        "Replay mismatch for %s: unexplained=%s missing=%s",
                        user_id,
                        list(report.unexplained),
                        list(report.missing),
                    )
                reports.append(report)
        return reports
