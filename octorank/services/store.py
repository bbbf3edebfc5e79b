"""Persistence layer over async SQLAlchemy.

Every public method opens its own short session and transaction, so callers
running concurrently (one coroutine per user in a batch) never share
transaction state. Invariants that span rows are held by unique indexes plus
the repair helpers below, not by in-process locks.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from octorank.models import (
    Achievement,
    GithubStats,
    LeaderboardEntry,
    LeaderboardSession,
    User,
    UserAchievement,
)
from octorank.schemas import GitHubProfile, UserStatsSnapshot
from octorank.services.achievement_definitions import AchievementDefinition, criteria_to_dict
from octorank.services.period_clock import Clock, SessionBounds, utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = tuple(name for name in UserStatsSnapshot.model_fields if name != "degraded")


def _insert_for(db: AsyncSession, model):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


class Store:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    # =========================================================================
    # USERS
    # =========================================================================

    async def get_user(self, user_id: str) -> User | None:
        async with self.session_factory() as db:
            return await db.get(User, user_id)

    async def get_all_users(self) -> list[User]:
        """Users with a GitHub username, the only ones that can be refreshed."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(User).where(User.username.is_not(None)).order_by(User.created_at)
            )
            return list(result.scalars().all())

    async def upsert_user(self, user_id: str, profile: GitHubProfile) -> User:
        async with self.session_factory() as db, db.begin():
            user = await db.get(User, user_id)
            if user is None:
                user = User(id=user_id)
                db.add(user)
            user.username = profile.login
            user.name = profile.name
            user.profile_image_url = profile.avatar_url
            user.github_id = profile.github_id
            if profile.created_at is not None:
                user.github_created_at = profile.created_at
            await db.flush()
            return user

    # =========================================================================
    # STATS SNAPSHOTS
    # =========================================================================

    async def get_github_stats(self, user_id: str) -> UserStatsSnapshot | None:
        async with self.session_factory() as db:
            result = await db.execute(select(GithubStats).where(GithubStats.user_id == user_id))
            row = result.scalar_one_or_none()
            return UserStatsSnapshot.model_validate(row) if row is not None else None

    async def upsert_github_stats(self, user_id: str, snapshot: UserStatsSnapshot) -> None:
        """Overwrite the user's snapshot wholesale."""
        values = snapshot.model_dump(include=set(SNAPSHOT_COLUMNS))
        async with self.session_factory() as db, db.begin():
            result = await db.execute(select(GithubStats).where(GithubStats.user_id == user_id))
            row = result.scalar_one_or_none()
            if row is None:
                db.add(GithubStats(user_id=user_id, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)

    async def get_snapshots_fetched_since(self, since: datetime) -> list[tuple[str, UserStatsSnapshot]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(GithubStats).where(GithubStats.last_fetched_at >= since)
            )
            return [
                (row.user_id, UserStatsSnapshot.model_validate(row))
                for row in result.scalars().all()
            ]

    # =========================================================================
    # ACHIEVEMENTS
    # =========================================================================

    async def get_all_achievements(self) -> list[Achievement]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.id)
            )
            return list(result.scalars().all())

    async def seed_achievements(self, definitions: Iterable[AchievementDefinition]) -> int:
        """Insert or refresh catalog rows by slug. Returns the number of new rows."""
        created = 0
        async with self.session_factory() as db, db.begin():
            result = await db.execute(select(Achievement))
            existing = {row.slug: row for row in result.scalars().all()}
            for definition in definitions:
                row = existing.get(definition.slug)
                if row is None:
                    row = Achievement(slug=definition.slug)
                    db.add(row)
                    created += 1
                row.name = definition.name
                row.description = definition.description
                row.category = definition.category
                row.icon = definition.icon
                row.rarity = definition.rarity
                row.tier = definition.tier
                row.criteria = criteria_to_dict(definition.criteria)
                row.points = definition.points
                row.is_leveled = definition.is_leveled
                row.is_github_native = definition.is_github_native
                row.source = definition.source
                row.is_active = True
        return created

    async def get_user_achievements(self, user_id: str) -> list[UserAchievement]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(UserAchievement).where(UserAchievement.user_id == user_id)
            )
            return list(result.scalars().all())

    async def unlock_achievement(
        self,
        user_id: str,
        achievement_id: int,
        *,
        progress: int = 1,
        max_progress: int = 1,
        current_value: int = 0,
        current_level: int = 0,
        next_level_requirement: int = 0,
    ) -> UserAchievement | None:
        """Create the unlock record. None when the user already holds it."""
        now = self.clock()
        try:
            async with self.session_factory() as db, db.begin():
                row = UserAchievement(
                    user_id=user_id,
                    achievement_id=achievement_id,
                    unlocked_at=now,
                    progress=progress,
                    max_progress=max_progress,
                    current_value=current_value,
                    current_level=current_level,
                    next_level_requirement=next_level_requirement,
                    updated_at=now,
                )
                db.add(row)
                await db.flush()
                return row
        except IntegrityError:
            logger.info("Achievement %s already unlocked for user %s", achievement_id, user_id)
            return None

    async def update_user_achievement_progress(
        self,
        user_id: str,
        achievement_id: int,
        current_value: int,
        next_level_requirement: int,
        current_level: int,
    ) -> None:
        async with self.session_factory() as db, db.begin():
            await db.execute(
                update(UserAchievement)
                .where(
                    UserAchievement.user_id == user_id,
                    UserAchievement.achievement_id == achievement_id,
                )
                .values(
                    current_value=current_value,
                    next_level_requirement=next_level_requirement,
                    current_level=current_level,
                    updated_at=self.clock(),
                )
            )

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def get_active_sessions(self, session_type: str) -> list[LeaderboardSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardSession)
                .where(
                    LeaderboardSession.session_type == session_type,
                    LeaderboardSession.is_active.is_(True),
                )
                .order_by(LeaderboardSession.created_at.desc(), LeaderboardSession.id.desc())
            )
            return list(result.scalars().all())

    async def get_active_session(self, session_type: str) -> LeaderboardSession | None:
        sessions = await self.get_active_sessions(session_type)
        return sessions[0] if sessions else None

    async def get_session(self, session_id: int) -> LeaderboardSession | None:
        async with self.session_factory() as db:
            return await db.get(LeaderboardSession, session_id)

    async def deactivate_sessions(self, session_ids: Iterable[int]) -> int:
        ids = list(session_ids)
        if not ids:
            return 0
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                update(LeaderboardSession)
                .where(LeaderboardSession.id.in_(ids))
                .values(is_active=False, updated_at=self.clock())
            )
            return result.rowcount

    async def deactivate_all_sessions(self, session_type: str) -> int:
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                update(LeaderboardSession)
                .where(
                    LeaderboardSession.session_type == session_type,
                    LeaderboardSession.is_active.is_(True),
                )
                .values(is_active=False, updated_at=self.clock())
            )
            return result.rowcount

    async def activate_session_for_key(
        self,
        session_type: str,
        session_key: str,
        bounds: SessionBounds,
        update_interval_minutes: int,
    ) -> LeaderboardSession:
        """Insert the session for ``session_key``, or reactivate the existing row.

        A concurrent creator may win the insert; the unique key then makes us
        fall through to reactivating the row it wrote.
        """
        try:
            return await self._insert_or_reactivate(session_type, session_key, bounds, update_interval_minutes)
        except IntegrityError:
            logger.warning("Session %s created concurrently, reusing existing row", session_key)
        return await self._insert_or_reactivate(session_type, session_key, bounds, update_interval_minutes)

    async def _insert_or_reactivate(
        self,
        session_type: str,
        session_key: str,
        bounds: SessionBounds,
        update_interval_minutes: int,
    ) -> LeaderboardSession:
        now = self.clock()
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                select(LeaderboardSession).where(LeaderboardSession.session_key == session_key)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = LeaderboardSession(
                    session_type=session_type,
                    session_key=session_key,
                    created_at=now,
                )
                db.add(row)
            row.start_date = bounds.start
            row.end_date = bounds.end
            row.is_active = True
            row.update_interval_minutes = update_interval_minutes
            row.updated_at = now
            row.next_update_at = now + timedelta(minutes=update_interval_minutes)
            await db.flush()
            return row

    async def touch_session(self, session_id: int, last_update_at: datetime, next_update_at: datetime) -> None:
        async with self.session_factory() as db, db.begin():
            await db.execute(
                update(LeaderboardSession)
                .where(LeaderboardSession.id == session_id)
                .values(
                    last_update_at=last_update_at,
                    next_update_at=next_update_at,
                    updated_at=self.clock(),
                )
            )

    async def get_sessions_for_type(self, session_type: str, limit: int = 10) -> list[LeaderboardSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardSession)
                .where(LeaderboardSession.session_type == session_type)
                .order_by(LeaderboardSession.start_date.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # =========================================================================
    # LEADERBOARD ENTRIES
    # =========================================================================

    async def delete_session_entries(self, session_id: int) -> int:
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                delete(LeaderboardEntry).where(LeaderboardEntry.session_id == session_id)
            )
            return result.rowcount

    async def delete_duplicate_entries(self, user_id: str, session_id: int) -> int:
        """Keep only the most recently updated row for (user, session)."""
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                select(LeaderboardEntry.id)
                .where(
                    LeaderboardEntry.user_id == user_id,
                    LeaderboardEntry.session_id == session_id,
                )
                .order_by(LeaderboardEntry.updated_at.desc(), LeaderboardEntry.id.desc())
            )
            ids = list(result.scalars().all())
            if len(ids) <= 1:
                return 0
            await db.execute(delete(LeaderboardEntry).where(LeaderboardEntry.id.in_(ids[1:])))
            return len(ids) - 1

    async def delete_stale_entries(self, user_id: str, session_type: str, keep_session_id: int) -> int:
        """Drop the user's entries in sessions of this type other than ``keep_session_id``."""
        stale_sessions = select(LeaderboardSession.id).where(
            LeaderboardSession.session_type == session_type,
            LeaderboardSession.id != keep_session_id,
        )
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                delete(LeaderboardEntry).where(
                    LeaderboardEntry.user_id == user_id,
                    LeaderboardEntry.session_id.in_(stale_sessions),
                )
            )
            return result.rowcount

    async def upsert_leaderboard_entries(
        self,
        session: LeaderboardSession,
        rows: Iterable[dict[str, Any]],
    ) -> int:
        """Upsert ``{"user_id", "commits", "score"}`` rows into one session."""
        now = self.clock()
        values = [
            {
                "user_id": row["user_id"],
                "session_id": session.id,
                "period": session.session_type,
                "period_date": session.session_key.split("-", 1)[1],
                "commits": row["commits"],
                "score": row["score"],
                "created_at": now,
                "updated_at": now,
            }
            for row in rows
        ]
        if not values:
            return 0
        async with self.session_factory() as db, db.begin():
            stmt = _insert_for(db, LeaderboardEntry).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[LeaderboardEntry.user_id, LeaderboardEntry.session_id],
                set_={
                    "commits": stmt.excluded.commits,
                    "score": stmt.excluded.score,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
        return len(values)

    async def update_session_ranks(self, session_id: int) -> None:
        """Rewrite every rank in the session with one UPDATE.

        Order: commits DESC, score DESC, updated_at ASC, id ASC.
        """
        ranked = aliased(LeaderboardEntry)
        ordered = (
            select(
                ranked.id.label("entry_id"),
                func.row_number()
                .over(
                    order_by=(
                        ranked.commits.desc(),
                        ranked.score.desc(),
                        ranked.updated_at.asc(),
                        ranked.id.asc(),
                    )
                )
                .label("new_rank"),
            )
            .where(ranked.session_id == session_id)
            .subquery()
        )
        new_rank = (
            select(ordered.c.new_rank)
            .where(ordered.c.entry_id == LeaderboardEntry.id)
            .scalar_subquery()
        )
        async with self.session_factory() as db, db.begin():
            await db.execute(
                update(LeaderboardEntry)
                .where(LeaderboardEntry.session_id == session_id)
                .values(rank=new_rank)
                .execution_options(synchronize_session=False)
            )

    async def get_entries(self, session_id: int) -> list[LeaderboardEntry]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardEntry)
                .where(LeaderboardEntry.session_id == session_id)
                .order_by(LeaderboardEntry.rank.asc(), LeaderboardEntry.id.asc())
            )
            return list(result.scalars().all())

    async def get_user_entry(self, user_id: str, session_id: int) -> LeaderboardEntry | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardEntry)
                .where(
                    LeaderboardEntry.user_id == user_id,
                    LeaderboardEntry.session_id == session_id,
                )
                .order_by(LeaderboardEntry.updated_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def count_entries(self, session_id: int) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(LeaderboardEntry.id)).where(LeaderboardEntry.session_id == session_id)
            )
            return result.scalar_one()

    async def get_leaderboard_rows(
        self,
        session_id: int,
        order_by: tuple,
        limit: int,
        offset: int,
    ) -> list[tuple[LeaderboardEntry, User | None, GithubStats | None]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardEntry, User, GithubStats)
                .outerjoin(User, User.id == LeaderboardEntry.user_id)
                .outerjoin(GithubStats, GithubStats.user_id == LeaderboardEntry.user_id)
                .where(LeaderboardEntry.session_id == session_id)
                .order_by(*order_by)
                .limit(limit)
                .offset(offset)
            )
            return [tuple(row) for row in result.all()]

    async def get_session_totals(self, session_id: int) -> tuple[int, int, int]:
        """(participants, total commits, total score) for a session."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    func.count(LeaderboardEntry.id),
                    func.coalesce(func.sum(LeaderboardEntry.commits), 0),
                    func.coalesce(func.sum(LeaderboardEntry.score), 0),
                ).where(LeaderboardEntry.session_id == session_id)
            )
            participants, commits, score = result.one()
            return int(participants), int(commits), int(score)

    async def get_user_session_history(
        self,
        user_id: str,
        session_type: str,
        limit: int,
    ) -> list[tuple[LeaderboardEntry, LeaderboardSession]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardEntry, LeaderboardSession)
                .join(LeaderboardSession, LeaderboardSession.id == LeaderboardEntry.session_id)
                .where(
                    LeaderboardEntry.user_id == user_id,
                    LeaderboardSession.session_type == session_type,
                )
                .order_by(LeaderboardSession.start_date.desc())
                .limit(limit)
            )
            return [tuple(row) for row in result.all()]

    async def get_recent_entries(
        self,
        limit: int,
    ) -> list[tuple[LeaderboardEntry, LeaderboardSession, User | None]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LeaderboardEntry, LeaderboardSession, User)
                .join(
                    LeaderboardSession,
                    and_(
                        LeaderboardSession.id == LeaderboardEntry.session_id,
                        LeaderboardSession.is_active.is_(True),
                    ),
                )
                .outerjoin(User, User.id == LeaderboardEntry.user_id)
                .order_by(LeaderboardEntry.updated_at.desc(), LeaderboardEntry.id.desc())
                .limit(limit)
            )
            return [tuple(row) for row in result.all()]
