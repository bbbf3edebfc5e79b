from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# GITHUB INPUTS
# =============================================================================

class GitHubProfile(BaseModel):
    """Public profile data for a GitHub account."""

    github_id: int
    login: str
    name: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None
    followers: int = 0
    following: int = 0
    public_repos: int = 0


class UserStatsSnapshot(BaseModel):
    """The latest aggregated GitHub stats for one user."""

    model_config = ConfigDict(from_attributes=True)

    daily_contributions: int = 0
    weekly_contributions: int = 0
    monthly_contributions: int = 0
    yearly_contributions: int = 0
    last_365_contributions: int = 0
    overall_contributions: int = 0
    points: int = 0
    total_stars: int = 0
    total_forks: int = 0
    total_repositories: int = 0
    followers: int = 0
    following: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    top_language: str | None = None
    language_stats: dict[str, int] = Field(default_factory=dict)
    total_commits: int = 0
    meaningful_commits: int = 0
    total_pull_requests: int = 0
    merged_pull_requests: int = 0
    total_issues: int = 0
    closed_issues: int = 0
    total_reviews: int = 0
    external_contributors: int = 0
    repos_with_stars: int = 0
    repos_with_forks: int = 0
    language_count: int = 0
    top_language_percentage: int = 0
    rare_language_repos: int = 0

    quickdraw: bool = False
    pair_extraordinaire: bool = False
    pull_shark: bool = False
    galaxy_brain: bool = False
    yolo: bool = False
    public_sponsor: bool = False
    open_source_hero: bool = False
    community_builder: bool = False
    mentor: bool = False
    weekend_warrior: bool = False
    early_bird: bool = False
    trending_developer: bool = False

    last_fetched_at: datetime
    degraded: bool = Field(default=False, description="True when built from the REST fallback")


# =============================================================================
# ACHIEVEMENTS
# =============================================================================

class UnlockedAchievement(BaseModel):
    """An achievement newly unlocked by an evaluation pass."""

    achievement_id: int
    slug: str
    name: str
    unlocked_at: datetime
    current_level: int | None = None
    current_value: int | None = None


class AchievementProgress(BaseModel):
    """A user's standing on one achievement, as presented to clients."""

    achievement_id: int
    slug: str
    name: str
    description: str
    category: str
    icon: str
    rarity: str
    tier: str
    points: int
    is_leveled: bool
    is_unlocked: bool
    unlocked_at: datetime | None = None
    progress: float = 0
    max_progress: float = 1
    progress_percentage: float = 0
    current_level: int | None = None
    current_value: int | None = None
    next_level_requirement: int | None = None
    animation_intensity: float | None = None


# =============================================================================
# LEADERBOARDS
# =============================================================================

class SessionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_type: str
    session_key: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    update_interval_minutes: int
    last_update_at: datetime | None = None
    next_update_at: datetime | None = None


class LeaderboardRow(BaseModel):
    """One ranked user in a session leaderboard page."""

    rank: int
    stored_rank: int | None = None
    user_id: str
    username: str | None = None
    name: str | None = None
    profile_image_url: str | None = None
    commits: int
    score: int
    total_stars: int = 0
    current_streak: int = 0
    total_repositories: int = 0
    followers: int = 0
    top_language: str | None = None
    updated_at: datetime | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class SessionLeaderboardPage(BaseModel):
    session: SessionSummary | None = None
    entries: list[LeaderboardRow] = Field(default_factory=list)
    pagination: Pagination
    metric: str = "points"


class SessionPosition(BaseModel):
    rank: int | None
    score: int
    commits: int


class SessionStats(BaseModel):
    session: SessionSummary | None = None
    participants: int = 0
    total_commits: int = 0
    total_score: int = 0
    top_performer: LeaderboardRow | None = None


class SessionHistoryItem(BaseModel):
    session_key: str
    session_type: str
    start_date: datetime
    end_date: datetime
    rank: int | None
    commits: int
    score: int


class SessionActivityItem(BaseModel):
    user_id: str
    username: str | None = None
    session_type: str
    session_key: str
    commits: int
    score: int
    rank: int | None
    updated_at: datetime


# =============================================================================
# BACKGROUND
# =============================================================================

class UpdateSummary(BaseModel):
    """Outcome of one background refresh run."""

    success: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: int = 0
