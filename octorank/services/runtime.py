"""Process-level wiring of the scheduler and the background orchestrator."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from octorank.core.database import create_session_factory, init_db
from octorank.services.achievements import AchievementEngine
from octorank.services.background import BackgroundOrchestrator, OrchestratorConfig
from octorank.services.github import GitHubStatsSource, StatsSource
from octorank.services.leaderboard import LeaderboardRanker
from octorank.services.period_clock import Clock, utc_now
from octorank.services.sessions import SessionScheduler
from octorank.services.store import Store

logger = logging.getLogger(__name__)


class SessionBackgroundRuntime:
    """Owns one scheduler and one orchestrator for the lifetime of the process."""

    def __init__(
        self,
        engine: AsyncEngine,
        stats_source: StatsSource | None = None,
        config: OrchestratorConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.engine = engine
        self.store = Store(create_session_factory(engine), clock=clock)
        self.ranker = LeaderboardRanker(self.store)
        self.achievements = AchievementEngine(self.store, clock=clock)
        self.scheduler = SessionScheduler(self.store, self.ranker, clock=clock)
        self.orchestrator = BackgroundOrchestrator(
            self.store,
            stats_source or GitHubStatsSource(clock=clock),
            self.achievements,
            self.ranker,
            self.scheduler,
            config=config,
            clock=clock,
        )

    async def start(self) -> None:
        await init_db(self.engine)
        await self.achievements.seed_definitions()
        await self.scheduler.start()
        self.orchestrator.start()
        logger.info("Session background runtime started")

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.scheduler.stop()
        logger.info("Session background runtime stopped")

    async def force_refresh_all_data(self) -> dict[str, Any]:
        """Refresh every user, then every session."""
        summary = await self.orchestrator.trigger_update()
        sessions = await self.scheduler.trigger_all_sessions_update()
        return {
            "update": summary.model_dump() if summary else None,
            "sessions": sessions,
        }

    async def get_status(self) -> dict[str, Any]:
        return {
            "background": self.orchestrator.get_status(),
            "sessions": await self.scheduler.get_status(),
        }

    def get_config(self) -> dict[str, Any]:
        return {"background": self.orchestrator.get_config()}
