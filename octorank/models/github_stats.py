"""Latest GitHub stats snapshot per user. Overwritten wholesale on every refresh."""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from octorank.models.base import Base

if TYPE_CHECKING:
    from octorank.models.user import User


class GithubStats(Base):
    __tablename__ = "github_stats"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        index=True,
    )

    # Contribution windows
    daily_contributions: Mapped[int] = mapped_column(Integer, default=0)
    weekly_contributions: Mapped[int] = mapped_column(Integer, default=0)
    monthly_contributions: Mapped[int] = mapped_column(Integer, default=0)
    yearly_contributions: Mapped[int] = mapped_column(Integer, default=0)
    last_365_contributions: Mapped[int] = mapped_column(Integer, default=0)
    overall_contributions: Mapped[int] = mapped_column(Integer, default=0)
    points: Mapped[int] = mapped_column(Integer, default=0)

    # Repositories and social
    total_stars: Mapped[int] = mapped_column(Integer, default=0)
    total_forks: Mapped[int] = mapped_column(Integer, default=0)
    total_repositories: Mapped[int] = mapped_column(Integer, default=0)
    followers: Mapped[int] = mapped_column(Integer, default=0)
    following: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    top_language: Mapped[str | None] = mapped_column(String(100), nullable=True)
    language_stats: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # Activity
    total_commits: Mapped[int] = mapped_column(Integer, default=0)
    meaningful_commits: Mapped[int] = mapped_column(Integer, default=0)
    total_pull_requests: Mapped[int] = mapped_column(Integer, default=0)
    merged_pull_requests: Mapped[int] = mapped_column(Integer, default=0)
    total_issues: Mapped[int] = mapped_column(Integer, default=0)
    closed_issues: Mapped[int] = mapped_column(Integer, default=0)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    external_contributors: Mapped[int] = mapped_column(Integer, default=0)
    repos_with_stars: Mapped[int] = mapped_column(Integer, default=0)
    repos_with_forks: Mapped[int] = mapped_column(Integer, default=0)
    language_count: Mapped[int] = mapped_column(Integer, default=0)
    top_language_percentage: Mapped[int] = mapped_column(Integer, default=0)
    rare_language_repos: Mapped[int] = mapped_column(Integer, default=0)

    # Badge flags
    quickdraw: Mapped[bool] = mapped_column(Boolean, default=False)
    pair_extraordinaire: Mapped[bool] = mapped_column(Boolean, default=False)
    pull_shark: Mapped[bool] = mapped_column(Boolean, default=False)
    galaxy_brain: Mapped[bool] = mapped_column(Boolean, default=False)
    yolo: Mapped[bool] = mapped_column(Boolean, default=False)
    public_sponsor: Mapped[bool] = mapped_column(Boolean, default=False)
    open_source_hero: Mapped[bool] = mapped_column(Boolean, default=False)
    community_builder: Mapped[bool] = mapped_column(Boolean, default=False)
    mentor: Mapped[bool] = mapped_column(Boolean, default=False)
    weekend_warrior: Mapped[bool] = mapped_column(Boolean, default=False)
    early_bird: Mapped[bool] = mapped_column(Boolean, default=False)
    trending_developer: Mapped[bool] = mapped_column(Boolean, default=False)

    last_fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    user: Mapped["User"] = relationship("User", back_populates="stats")
