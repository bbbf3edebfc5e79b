"""Achievement evaluation - leveled progress, badge unlocks and progress views."""

import logging
from datetime import datetime

from dateutil.relativedelta import relativedelta

from octorank.models import Achievement, User, UserAchievement
from octorank.schemas import AchievementProgress, UnlockedAchievement, UserStatsSnapshot
from octorank.services import level_formula
from octorank.services.achievement_definitions import (
    LEVELED_BASE_POINTS,
    FlagCriteria,
    LeveledCriteria,
    ThresholdCriteria,
    all_definitions,
    criteria_from_dict,
)
from octorank.services.period_clock import Clock, as_utc, utc_now
from octorank.services.store import Store

logger = logging.getLogger(__name__)


def account_age_years(created_at: datetime | None, now: datetime) -> int:
    """Full years completed since the GitHub account was created."""
    if created_at is None:
        return 0
    return max(0, relativedelta(as_utc(now), as_utc(created_at)).years)


def metric_value(metric: str, snapshot: UserStatsSnapshot, user: User | None, now: datetime) -> int:
    if metric == "account_age":
        return account_age_years(user.github_created_at if user else None, now)
    value = getattr(snapshot, metric, 0)
    return int(value or 0)


class AchievementEngine:
    """Evaluates a user's snapshot against the achievement catalog."""

    def __init__(self, store: Store, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def seed_definitions(self) -> int:
        created = await self.store.seed_achievements(all_definitions())
        if created:
            logger.info("Seeded %d achievement definitions", created)
        return created

    async def evaluate(self, user_id: str) -> list[UnlockedAchievement]:
        """Unlock newly earned achievements and refresh leveled progress.

        A leveled achievement is unlocked the first time the user is
        evaluated, even at level 0. Records are never deleted.
        """
        snapshot = await self.store.get_github_stats(user_id)
        if snapshot is None:
            return []

        user = await self.store.get_user(user_id)
        achievements = await self.store.get_all_achievements()
        held = {ua.achievement_id: ua for ua in await self.store.get_user_achievements(user_id)}
        now = self.clock()

        newly_unlocked: list[UnlockedAchievement] = []
        for achievement in achievements:
            criteria = criteria_from_dict(achievement.criteria)
            existing = held.get(achievement.id)

            match criteria:
                case LeveledCriteria(category=category, metric=metric):
                    value = metric_value(metric, snapshot, user, now)
                    level = level_formula.current_level_for(value, category)
                    next_requirement = level_formula.next_level_requirement(value, category)
                    if existing is None:
                        unlocked = await self.store.unlock_achievement(
                            user_id,
                            achievement.id,
                            progress=value,
                            max_progress=next_requirement,
                            current_value=value,
                            current_level=level,
                            next_level_requirement=next_requirement,
                        )
                        if unlocked is not None:
                            newly_unlocked.append(self._unlocked(achievement, unlocked))
                    else:
                        await self.store.update_user_achievement_progress(
                            user_id, achievement.id, value, next_requirement, level
                        )

                case FlagCriteria(flag=flag):
                    if existing is None and bool(getattr(snapshot, flag, False)):
                        unlocked = await self.store.unlock_achievement(user_id, achievement.id)
                        if unlocked is not None:
                            newly_unlocked.append(self._unlocked(achievement, unlocked))

                case ThresholdCriteria(metric=metric, minimum=minimum):
                    if existing is None and metric_value(metric, snapshot, user, now) >= minimum:
                        unlocked = await self.store.unlock_achievement(
                            user_id, achievement.id, progress=minimum, max_progress=minimum
                        )
                        if unlocked is not None:
                            newly_unlocked.append(self._unlocked(achievement, unlocked))

        if newly_unlocked:
            logger.info(
                "User %s unlocked %d achievements: %s",
                user_id,
                len(newly_unlocked),
                ", ".join(a.slug for a in newly_unlocked),
            )
        return newly_unlocked

    async def get_user_achievement_progress(self, user_id: str) -> list[AchievementProgress]:
        snapshot = await self.store.get_github_stats(user_id)
        user = await self.store.get_user(user_id)
        achievements = await self.store.get_all_achievements()
        held = {ua.achievement_id: ua for ua in await self.store.get_user_achievements(user_id)}
        now = self.clock()

        progress = []
        for achievement in achievements:
            criteria = criteria_from_dict(achievement.criteria)
            record = held.get(achievement.id)
            if snapshot is None:
                progress.append(self._locked_view(achievement, 0, 1))
                continue

            match criteria:
                case LeveledCriteria(category=category, metric=metric):
                    value = metric_value(metric, snapshot, user, now)
                    progress.append(self._leveled_view(achievement, category, value, record))
                case FlagCriteria(flag=flag):
                    if record is not None:
                        progress.append(self._unlocked_view(achievement, record))
                    else:
                        reached = 1 if getattr(snapshot, flag, False) else 0
                        progress.append(self._locked_view(achievement, reached, 1))
                case ThresholdCriteria(metric=metric, minimum=minimum):
                    if record is not None:
                        progress.append(self._unlocked_view(achievement, record))
                    else:
                        value = metric_value(metric, snapshot, user, now)
                        progress.append(self._locked_view(achievement, min(value, minimum), minimum))
        return progress

    # =========================================================================
    # VIEWS
    # =========================================================================

    @staticmethod
    def _unlocked(achievement: Achievement, record: UserAchievement) -> UnlockedAchievement:
        return UnlockedAchievement(
            achievement_id=achievement.id,
            slug=achievement.slug,
            name=achievement.name,
            unlocked_at=record.unlocked_at,
            current_level=record.current_level if achievement.is_leveled else None,
            current_value=record.current_value if achievement.is_leveled else None,
        )

    @staticmethod
    def _base_view(achievement: Achievement) -> dict:
        return {
            "achievement_id": achievement.id,
            "slug": achievement.slug,
            "name": achievement.name,
            "description": achievement.description,
            "category": achievement.category,
            "icon": achievement.icon,
            "rarity": achievement.rarity,
            "tier": achievement.tier,
            "points": achievement.points,
            "is_leveled": achievement.is_leveled,
        }

    def _locked_view(self, achievement: Achievement, progress: int, max_progress: int) -> AchievementProgress:
        percentage = min(100.0, progress / max_progress * 100) if max_progress > 0 else 0.0
        return AchievementProgress(
            **self._base_view(achievement),
            is_unlocked=False,
            progress=progress,
            max_progress=max_progress,
            progress_percentage=percentage,
        )

    def _unlocked_view(self, achievement: Achievement, record: UserAchievement) -> AchievementProgress:
        return AchievementProgress(
            **self._base_view(achievement),
            is_unlocked=True,
            unlocked_at=record.unlocked_at,
            progress=record.progress,
            max_progress=record.max_progress,
            progress_percentage=100.0,
        )

    def _leveled_view(
        self,
        achievement: Achievement,
        category: str,
        value: int,
        record: UserAchievement | None,
    ) -> AchievementProgress:
        level_progress = level_formula.progress_to_next_level(value, category)
        level = level_progress.level
        tier = level_formula.visual_tier(level)
        view = self._base_view(achievement)
        view.update(
            name=level_formula.achievement_name(category, level),
            description=level_formula.achievement_description(category, level),
            rarity=tier.rarity,
            tier=tier.tier,
            points=int(LEVELED_BASE_POINTS * level_formula.points_multiplier(level)),
        )
        return AchievementProgress(
            **view,
            is_unlocked=True,
            unlocked_at=record.unlocked_at if record else None,
            progress=level_progress.progress,
            max_progress=level_progress.next_requirement,
            progress_percentage=level_progress.progress_percentage,
            current_level=level,
            current_value=value,
            next_level_requirement=level_progress.next_requirement,
            animation_intensity=tier.animation_intensity,
        )
