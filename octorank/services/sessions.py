"""Session lifecycle - one active leaderboard session per cadence.

Each session type gets its own timer task. A tick either rotates an expired
session or re-syncs the current one from fresh snapshots and re-ranks it.
The invariant "exactly one active session per type, keyed to the current
period" is restored by repair_session_invariants after every mutation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from octorank.core.errors import NoActiveSessionError
from octorank.models import LeaderboardSession
from octorank.services.leaderboard import LeaderboardRanker
from octorank.services.period_clock import (
    SESSION_TYPES,
    Clock,
    as_utc,
    session_bounds,
    session_key,
    utc_now,
)
from octorank.services.store import Store

logger = logging.getLogger(__name__)

# Refresh interval per session type, in minutes
SESSION_CONFIGS: dict[str, int] = {
    "daily": 5,
    "weekly": 6 * 60,
    "monthly": 12 * 60,
    "yearly": 24 * 60,
    "overall": 7 * 24 * 60,
}

# Slack after a period boundary before the rotation tick fires
_ROTATION_GRACE_SECONDS = 1.0

# First retry delay after a failed tick; doubles per consecutive failure up to the interval
_RETRY_BASE_SECONDS = 30.0


def pick_survivor(sessions: Sequence[LeaderboardSession], expected_key: str) -> LeaderboardSession:
    """The session to keep active: the expected key, else the newest."""
    for session in sessions:
        if session.session_key == expected_key:
            return session
    return max(sessions, key=lambda s: (as_utc(s.created_at), s.id))


@dataclass
class SchedulerState:
    is_running: bool = False
    session_ends: dict[str, datetime] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    tasks: dict[str, asyncio.Task] = field(default_factory=dict, repr=False)


class SessionScheduler:
    def __init__(self, store: Store, ranker: LeaderboardRanker, clock: Clock = utc_now):
        self.store = store
        self.ranker = ranker
        self.clock = clock
        self.state = SchedulerState()

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    # =========================================================================
    # INVARIANTS
    # =========================================================================

    async def repair_session_invariants(self, session_type: str) -> LeaderboardSession | None:
        """Deactivate all but one active session of this type. Idempotent."""
        active = await self.store.get_active_sessions(session_type)
        if len(active) <= 1:
            return active[0] if active else None

        survivor = pick_survivor(active, session_key(session_type, self.clock()))
        extra = [s.id for s in active if s.id != survivor.id]
        await self.store.deactivate_sessions(extra)
        logger.warning(
            "Found %d active %s sessions, kept %s and deactivated %s",
            len(active),
            session_type,
            survivor.session_key,
            extra,
        )
        return survivor

    async def ensure_active_session(self, session_type: str) -> LeaderboardSession:
        """Return the active session for the current period, creating it if needed."""
        now = self.clock()
        expected_key = session_key(session_type, now)

        active = await self.store.get_active_sessions(session_type)
        if any(s.session_key == expected_key for s in active):
            session = await self.repair_session_invariants(session_type)
        else:
            if active:
                await self.store.deactivate_all_sessions(session_type)
                for outdated in active:
                    await self.store.delete_session_entries(outdated.id)
                logger.info(
                    "Closed %d outdated %s sessions before creating %s",
                    len(active),
                    session_type,
                    expected_key,
                )
            created = await self.store.activate_session_for_key(
                session_type,
                expected_key,
                session_bounds(session_type, now),
                SESSION_CONFIGS[session_type],
            )
            session = await self.repair_session_invariants(session_type) or created

        self.state.session_ends[session_type] = as_utc(session.end_date)
        return session

    async def require_active_session(self, session_type: str) -> LeaderboardSession:
        session = await self.store.get_active_session(session_type)
        if session is None:
            raise NoActiveSessionError(f"No active {session_type} session")
        return session

    # =========================================================================
    # TICKS
    # =========================================================================

    async def rotate(self, session_type: str) -> LeaderboardSession:
        """Close the expired session and open the one for the current period."""
        old_sessions = await self.store.get_active_sessions(session_type)
        await self.store.deactivate_sessions(s.id for s in old_sessions)
        for old in old_sessions:
            removed = await self.store.delete_session_entries(old.id)
            logger.info("Closed %s session %s, removed %d entries", session_type, old.session_key, removed)

        session = await self.ensure_active_session(session_type)
        now = self.clock()
        await self.store.touch_session(
            session.id, now, now + timedelta(minutes=session.update_interval_minutes)
        )
        logger.info("Started %s session %s", session_type, session.session_key)
        return session

    async def refresh_session(self, session_type: str) -> bool:
        """One scheduler tick for a session type. Errors are logged, not raised."""
        try:
            now = self.clock()
            session = await self.store.get_active_session(session_type)
            if session is None or now > as_utc(session.end_date):
                await self.rotate(session_type)
                return True

            if session.session_key != session_key(session_type, now):
                session = await self.ensure_active_session(session_type)

            snapshots = await self.store.get_snapshots_fetched_since(as_utc(session.start_date))
            synced = await self.ranker.sync_session(session, snapshots)
            await self.store.touch_session(
                session.id, now, now + timedelta(minutes=session.update_interval_minutes)
            )
            logger.debug("Refreshed %s session %s with %d entries", session_type, session.session_key, synced)
            return True
        except Exception as e:
            logger.error("Session refresh failed for %s: %s: %s", session_type, type(e).__name__, e)
            return False

    async def trigger_session_update(self, session_type: str) -> bool:
        return await self.refresh_session(session_type)

    async def trigger_all_sessions_update(self) -> dict[str, bool]:
        return {session_type: await self.refresh_session(session_type) for session_type in SESSION_TYPES}

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _next_delay(self, session_type: str) -> float:
        """Seconds until the next tick: the interval, or sooner if the period ends first.

        After failed ticks the period end is ignored and retries back off
        exponentially, capped at the interval.
        """
        delay = SESSION_CONFIGS[session_type] * 60.0
        failures = self.state.failures.get(session_type, 0)
        if failures:
            return min(delay, _RETRY_BASE_SECONDS * 2 ** (failures - 1))
        session_end = self.state.session_ends.get(session_type)
        if session_end is not None:
            until_end = (session_end - self.clock()).total_seconds() + _ROTATION_GRACE_SECONDS
            delay = min(delay, max(_ROTATION_GRACE_SECONDS, until_end))
        return delay

    async def _timer_loop(self, session_type: str) -> None:
        try:
            while self.state.is_running:
                await asyncio.sleep(self._next_delay(session_type))
                if not self.state.is_running:
                    break
                if await self.refresh_session(session_type):
                    self.state.failures.pop(session_type, None)
                else:
                    self.state.failures[session_type] = self.state.failures.get(session_type, 0) + 1
        except asyncio.CancelledError:
            logger.debug("Timer for %s sessions cancelled", session_type)
            raise

    async def start(self) -> None:
        if self.state.is_running:
            logger.warning("Session scheduler already running")
            return

        self.state.is_running = True
        for session_type in SESSION_TYPES:
            try:
                await self.ensure_active_session(session_type)
            except Exception as e:
                logger.error("Could not initialize %s session: %s: %s", session_type, type(e).__name__, e)
            self.state.tasks[session_type] = asyncio.create_task(
                self._timer_loop(session_type),
                name=f"session-timer-{session_type}",
            )
        logger.info("Session scheduler started for %s", ", ".join(SESSION_TYPES))

    async def stop(self) -> None:
        if not self.state.is_running:
            return
        self.state.is_running = False
        tasks = list(self.state.tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.state.tasks.clear()
        logger.info("Session scheduler stopped")

    async def get_status(self) -> dict[str, Any]:
        sessions = {}
        for session_type in SESSION_TYPES:
            session = await self.store.get_active_session(session_type)
            sessions[session_type] = None if session is None else {
                "session_key": session.session_key,
                "start_date": as_utc(session.start_date).isoformat(),
                "end_date": as_utc(session.end_date).isoformat(),
                "update_interval_minutes": session.update_interval_minutes,
                "last_update_at": as_utc(session.last_update_at).isoformat() if session.last_update_at else None,
                "next_update_at": as_utc(session.next_update_at).isoformat() if session.next_update_at else None,
            }
        return {"is_running": self.state.is_running, "sessions": sessions}
