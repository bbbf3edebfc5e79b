from octorank.models.base import Base
from octorank.models.user import User
from octorank.models.github_stats import GithubStats
from octorank.models.achievement import (
    Achievement,
    AchievementRarity,
    UserAchievement,
    VisualTierName,
)
from octorank.models.leaderboard import LeaderboardEntry, LeaderboardSession

__all__ = [
    "Base",
    "User",
    "GithubStats",
    "Achievement",
    "AchievementRarity",
    "UserAchievement",
    "VisualTierName",
    "LeaderboardEntry",
    "LeaderboardSession",
]
