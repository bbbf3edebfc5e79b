"""Achievement definitions and per-user progress."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from octorank.models.base import Base


class VisualTierName(str, Enum):
    """Visual tiers shown for a leveled achievement."""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"
    LEGENDARY = "legendary"


class AchievementRarity(str, Enum):
    """Achievement rarity levels."""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class Achievement(Base):
    """Static achievement definitions - seeded at startup, shared by all users."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(primary_key=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True)  # e.g., "leveled-stars"
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    category: Mapped[str] = mapped_column(String(50))
    icon: Mapped[str] = mapped_column(String(50))
    rarity: Mapped[str] = mapped_column(String(50))
    tier: Mapped[str] = mapped_column(String(50))
    criteria: Mapped[dict[str, Any]] = mapped_column(JSON)  # serialized tagged criteria
    points: Mapped[int] = mapped_column(Integer, default=0)
    is_leveled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_github_native: Mapped[bool] = mapped_column(Boolean, default=False)
    source: Mapped[str] = mapped_column(String(50), default="devquest")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    user_achievements: Mapped[list["UserAchievement"]] = relationship(
        "UserAchievement",
        back_populates="achievement",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_achievement_category", "category"),
        Index("ix_achievement_leveled", "is_leveled"),
    )


class UserAchievement(Base):
    """Progress of one user on one achievement.

    Leveled achievements keep current_level in step with current_value; the
    row exists as soon as the user is first evaluated.
    """

    __tablename__ = "user_achievements"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    achievement_id: Mapped[int] = mapped_column(
        ForeignKey("achievements.id", ondelete="CASCADE"),
        index=True,
    )

    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    max_progress: Mapped[int] = mapped_column(Integer, default=1)

    # Leveled tracking
    current_level: Mapped[int] = mapped_column(Integer, default=0)
    current_value: Mapped[int] = mapped_column(Integer, default=0)
    next_level_requirement: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    achievement: Mapped["Achievement"] = relationship(
        "Achievement",
        back_populates="user_achievements",
    )

    __table_args__ = (
        Index("ix_user_achievement_unique", "user_id", "achievement_id", unique=True),
    )
