"""Background refresh of GitHub stats for every tracked user.

Each run walks all users in small batches, running a batch concurrently and
pausing between batches to stay under GitHub rate limits. Per user: fetch
profile and stats, persist the snapshot, evaluate achievements and upsert an
entry into every active session.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from octorank.core.config import settings
from octorank.models import User
from octorank.schemas import UpdateSummary
from octorank.services.achievements import AchievementEngine
from octorank.services.github import StatsSource
from octorank.services.leaderboard import LeaderboardRanker
from octorank.services.period_clock import SESSION_TYPES, Clock, utc_now
from octorank.services.sessions import SessionScheduler
from octorank.services.store import Store

logger = logging.getLogger(__name__)


class UserOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"


@dataclass
class OrchestratorConfig:
    interval_ms: int = 300_000
    batch_size: int = 5
    batch_delay_ms: int = 2_000
    initial_delay_ms: int = 10_000

    @classmethod
    def from_settings(cls) -> "OrchestratorConfig":
        return cls(
            interval_ms=settings.background_update_interval_ms,
            batch_size=settings.background_update_batch_size,
            batch_delay_ms=settings.background_update_batch_delay_ms,
            initial_delay_ms=settings.background_initial_delay_ms,
        )


@dataclass
class OrchestratorState:
    is_running: bool = False
    is_updating: bool = False
    last_update_at: datetime | None = None
    last_summary: UpdateSummary | None = None
    task: asyncio.Task | None = field(default=None, repr=False)


class BackgroundOrchestrator:
    def __init__(
        self,
        store: Store,
        stats_source: StatsSource,
        achievements: AchievementEngine,
        ranker: LeaderboardRanker,
        scheduler: SessionScheduler,
        config: OrchestratorConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.stats_source = stats_source
        self.achievements = achievements
        self.ranker = ranker
        self.scheduler = scheduler
        self.config = config or OrchestratorConfig.from_settings()
        self.clock = clock
        self.state = OrchestratorState()

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def is_updating(self) -> bool:
        return self.state.is_updating

    # =========================================================================
    # PER USER
    # =========================================================================

    async def update_user(self, user: User) -> UserOutcome:
        if not user.username:
            return UserOutcome.SKIPPED

        profile = await self.stats_source.fetch_user_data(user.username)
        snapshot = await self.stats_source.fetch_user_stats(user.username)

        await self.store.upsert_user(user.id, profile)
        await self.store.upsert_github_stats(user.id, snapshot)
        await self.achievements.evaluate(user.id)

        for session_type in SESSION_TYPES:
            try:
                # Rotates a session left over from a finished period
                session = await self.scheduler.ensure_active_session(session_type)
                await self.ranker.upsert_snapshot_entry(user.id, session, snapshot)
            except Exception as e:
                logger.error(
                    "Leaderboard update failed for %s in %s session: %s: %s",
                    user.username,
                    session_type,
                    type(e).__name__,
                    e,
                )

        return UserOutcome.SUCCESS

    # =========================================================================
    # RUN
    # =========================================================================

    async def perform_update(self) -> UpdateSummary | None:
        """Refresh every user once. Returns None if a run is already in progress."""
        if self.state.is_updating:
            logger.info("Background update already in progress, skipping")
            return None

        self.state.is_updating = True
        started = time.monotonic()
        summary = UpdateSummary()
        try:
            users = await self.store.get_all_users()
            logger.info("Starting background update for %d users", len(users))

            size = self.config.batch_size
            for start in range(0, len(users), size):
                batch = users[start:start + size]
                results = await asyncio.gather(
                    *(self.update_user(user) for user in batch),
                    return_exceptions=True,
                )
                for user, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        summary.errors += 1
                        logger.error(
                            "Background update failed for %s: %s: %s",
                            user.username or user.id,
                            type(result).__name__,
                            result,
                        )
                    elif result is UserOutcome.SKIPPED:
                        summary.skipped += 1
                    else:
                        summary.success += 1

                if start + size < len(users):
                    await asyncio.sleep(self.config.batch_delay_ms / 1000)
        finally:
            summary.duration_ms = int((time.monotonic() - started) * 1000)
            self.state.is_updating = False
            self.state.last_update_at = self.clock()
            self.state.last_summary = summary

        logger.info(
            "Background update finished: %d success, %d skipped, %d errors in %d ms",
            summary.success,
            summary.skipped,
            summary.errors,
            summary.duration_ms,
        )
        return summary

    async def trigger_update(self) -> UpdateSummary | None:
        """Run an update now unless one is already in progress."""
        if self.state.is_updating:
            logger.info("Manual trigger ignored, update already in progress")
            return None
        return await self.perform_update()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _loop(self) -> None:
        try:
            await asyncio.sleep(self.config.initial_delay_ms / 1000)
            while self.state.is_running:
                try:
                    await self.perform_update()
                except Exception:
                    logger.exception("Background update run crashed")
                await asyncio.sleep(self.config.interval_ms / 1000)
        except asyncio.CancelledError:
            logger.debug("Background update loop cancelled")
            raise

    def start(self) -> None:
        if self.state.is_running:
            logger.warning("Background orchestrator already running")
            return
        self.state.is_running = True
        self.state.task = asyncio.create_task(self._loop(), name="background-update")
        logger.info(
            "Background orchestrator started: every %d ms, batches of %d",
            self.config.interval_ms,
            self.config.batch_size,
        )

    async def stop(self) -> None:
        if not self.state.is_running:
            return
        self.state.is_running = False
        if self.state.task:
            self.state.task.cancel()
            await asyncio.gather(self.state.task, return_exceptions=True)
            self.state.task = None
        logger.info("Background orchestrator stopped")

    def get_status(self) -> dict[str, Any]:
        last = self.state.last_summary
        return {
            "is_running": self.state.is_running,
            "is_updating": self.state.is_updating,
            "last_update_at": self.state.last_update_at.isoformat() if self.state.last_update_at else None,
            "last_summary": last.model_dump() if last else None,
        }

    def get_config(self) -> dict[str, int]:
        return {
            "interval_ms": self.config.interval_ms,
            "batch_size": self.config.batch_size,
            "batch_delay_ms": self.config.batch_delay_ms,
            "initial_delay_ms": self.config.initial_delay_ms,
        }
