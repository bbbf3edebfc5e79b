"""Session leaderboard writes, rank recomputation and the read API."""

import logging
import math
from typing import Iterable

from octorank.models import GithubStats, LeaderboardEntry, LeaderboardSession, User
from octorank.schemas import (
    LeaderboardRow,
    Pagination,
    SessionActivityItem,
    SessionHistoryItem,
    SessionLeaderboardPage,
    SessionPosition,
    SessionStats,
    SessionSummary,
    UserStatsSnapshot,
)
from octorank.services.period_clock import SESSION_TYPES, SessionType, as_utc
from octorank.services.store import Store

logger = logging.getLogger(__name__)


# =============================================================================
# SCORING
# =============================================================================

# Contribution window backing each session's "commits" figure
PERIOD_CONTRIBUTION_FIELDS = {
    SessionType.DAILY.value: "daily_contributions",
    SessionType.WEEKLY.value: "weekly_contributions",
    SessionType.MONTHLY.value: "monthly_contributions",
    SessionType.YEARLY.value: "yearly_contributions",
    SessionType.OVERALL.value: "overall_contributions",
}

# Shorter sessions weigh fresh activity more heavily against lifetime points
PERIOD_SCORE_WEIGHTS = {
    SessionType.DAILY.value: 10,
    SessionType.WEEKLY.value: 5,
    SessionType.MONTHLY.value: 3,
    SessionType.YEARLY.value: 2,
    SessionType.OVERALL.value: 1,
}

LEADERBOARD_METRICS = ("points", "commits", "stars", "streak", "repos", "followers")


def session_commits(snapshot: UserStatsSnapshot, session_type: str) -> int:
    return int(getattr(snapshot, PERIOD_CONTRIBUTION_FIELDS[session_type]) or 0)


def session_score(snapshot: UserStatsSnapshot, session_type: str) -> int:
    return int(snapshot.points or 0) + session_commits(snapshot, session_type) * PERIOD_SCORE_WEIGHTS[session_type]


def _metric_order(metric: str) -> tuple:
    tie_break = (
        LeaderboardEntry.commits.desc(),
        LeaderboardEntry.score.desc(),
        LeaderboardEntry.updated_at.asc(),
        LeaderboardEntry.id.asc(),
    )
    primary = {
        "points": (LeaderboardEntry.score.desc(),),
        "commits": (),
        "stars": (GithubStats.total_stars.desc(),),
        "streak": (GithubStats.current_streak.desc(),),
        "repos": (GithubStats.total_repositories.desc(),),
        "followers": (GithubStats.followers.desc(),),
    }
    if metric not in primary:
        raise ValueError(f"Unknown leaderboard metric: {metric}")
    return primary[metric] + tie_break


def _row(
    rank: int,
    entry: LeaderboardEntry,
    user: User | None,
    stats: GithubStats | None,
) -> LeaderboardRow:
    return LeaderboardRow(
        rank=rank,
        stored_rank=entry.rank,
        user_id=entry.user_id,
        username=user.username if user else None,
        name=user.name if user else None,
        profile_image_url=user.profile_image_url if user else None,
        commits=entry.commits,
        score=entry.score,
        total_stars=stats.total_stars if stats else 0,
        current_streak=stats.current_streak if stats else 0,
        total_repositories=stats.total_repositories if stats else 0,
        followers=stats.followers if stats else 0,
        top_language=stats.top_language if stats else None,
        updated_at=as_utc(entry.updated_at) if entry.updated_at else None,
    )


class LeaderboardRanker:
    def __init__(self, store: Store):
        self.store = store

    # =========================================================================
    # WRITES
    # =========================================================================

    async def repair_entry_invariants(self, user_id: str, session: LeaderboardSession) -> int:
        """Leave at most one row for (user, session) and none in other sessions of its type."""
        duplicates = await self.store.delete_duplicate_entries(user_id, session.id)
        stale = await self.store.delete_stale_entries(user_id, session.session_type, session.id)
        if duplicates or stale:
            logger.warning(
                "Repaired entries for user %s in %s: %d duplicates, %d stale",
                user_id,
                session.session_key,
                duplicates,
                stale,
            )
        return duplicates + stale

    async def upsert_entry(self, user_id: str, session: LeaderboardSession, commits: int, score: int) -> None:
        await self.repair_entry_invariants(user_id, session)
        await self.store.upsert_leaderboard_entries(
            session, [{"user_id": user_id, "commits": commits, "score": score}]
        )
        await self.recompute_ranks(session.id)

    async def upsert_snapshot_entry(
        self,
        user_id: str,
        session: LeaderboardSession,
        snapshot: UserStatsSnapshot,
    ) -> None:
        await self.upsert_entry(
            user_id,
            session,
            commits=session_commits(snapshot, session.session_type),
            score=session_score(snapshot, session.session_type),
        )

    async def sync_session(
        self,
        session: LeaderboardSession,
        snapshots: Iterable[tuple[str, UserStatsSnapshot]],
    ) -> int:
        """Bulk-refresh a session from snapshots, then rank once."""
        rows = [
            {
                "user_id": user_id,
                "commits": session_commits(snapshot, session.session_type),
                "score": session_score(snapshot, session.session_type),
            }
            for user_id, snapshot in snapshots
        ]
        for row in rows:
            await self.store.delete_stale_entries(row["user_id"], session.session_type, session.id)
        written = await self.store.upsert_leaderboard_entries(session, rows)
        await self.recompute_ranks(session.id)
        return written

    async def recompute_ranks(self, session_id: int) -> bool:
        """Rewrite ranks for a session. Failures are logged, never raised."""
        try:
            await self.store.update_session_ranks(session_id)
            return True
        except Exception as e:
            logger.error("Rank recompute failed for session %s: %s: %s", session_id, type(e).__name__, e)
            return False

    # =========================================================================
    # READS
    # =========================================================================

    async def get_session_leaderboard(
        self,
        session_type: str,
        page: int = 1,
        limit: int = 50,
        metric: str = "points",
    ) -> SessionLeaderboardPage:
        page = max(1, page)
        limit = max(1, min(limit, 100))
        order_by = _metric_order(metric)

        session = await self.store.get_active_session(session_type)
        if session is None:
            return SessionLeaderboardPage(
                pagination=Pagination(page=page, limit=limit, total=0, total_pages=0, has_next=False, has_prev=page > 1),
                metric=metric,
            )

        offset = (page - 1) * limit
        total = await self.store.count_entries(session.id)
        rows = await self.store.get_leaderboard_rows(session.id, order_by, limit, offset)
        total_pages = math.ceil(total / limit) if total else 0
        return SessionLeaderboardPage(
            session=SessionSummary.model_validate(session),
            entries=[_row(offset + i + 1, *row) for i, row in enumerate(rows)],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
            metric=metric,
        )

    async def get_all_session_leaderboards(
        self,
        limit: int = 10,
        metric: str = "points",
    ) -> dict[str, SessionLeaderboardPage]:
        return {
            session_type: await self.get_session_leaderboard(session_type, 1, limit, metric)
            for session_type in SESSION_TYPES
        }

    async def get_user_session_position(self, user_id: str, session_type: str) -> SessionPosition | None:
        session = await self.store.get_active_session(session_type)
        if session is None:
            return None
        entry = await self.store.get_user_entry(user_id, session.id)
        if entry is None:
            return None
        return SessionPosition(rank=entry.rank, score=entry.score, commits=entry.commits)

    async def get_session_stats(self, session_type: str) -> SessionStats:
        session = await self.store.get_active_session(session_type)
        if session is None:
            return SessionStats()
        participants, total_commits, total_score = await self.store.get_session_totals(session.id)
        top = await self.store.get_leaderboard_rows(session.id, _metric_order("commits"), 1, 0)
        return SessionStats(
            session=SessionSummary.model_validate(session),
            participants=participants,
            total_commits=total_commits,
            total_score=total_score,
            top_performer=_row(1, *top[0]) if top else None,
        )

    async def get_user_session_history(
        self,
        user_id: str,
        session_type: str,
        limit: int = 10,
    ) -> list[SessionHistoryItem]:
        history = await self.store.get_user_session_history(user_id, session_type, limit)
        return [
            SessionHistoryItem(
                session_key=session.session_key,
                session_type=session.session_type,
                start_date=as_utc(session.start_date),
                end_date=as_utc(session.end_date),
                rank=entry.rank,
                commits=entry.commits,
                score=entry.score,
            )
            for entry, session in history
        ]

    async def get_recent_session_activity(self, limit: int = 20) -> list[SessionActivityItem]:
        recent = await self.store.get_recent_entries(limit)
        return [
            SessionActivityItem(
                user_id=entry.user_id,
                username=user.username if user else None,
                session_type=session.session_type,
                session_key=session.session_key,
                commits=entry.commits,
                score=entry.score,
                rank=entry.rank,
                updated_at=as_utc(entry.updated_at),
            )
            for entry, session, user in recent
        ]
