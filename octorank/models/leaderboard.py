"""Session-scoped leaderboard tables."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from octorank.models.base import Base


class LeaderboardSession(Base):
    """A time-boxed contest window for one cadence.

    At most one row per session_type is active, and its session_key matches
    the calendar period containing now.
    """

    __tablename__ = "leaderboard_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_type: Mapped[str] = mapped_column(String(20))
    session_key: Mapped[str] = mapped_column(String(50), unique=True)  # e.g., "weekly-2024-W41"
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    update_interval_minutes: Mapped[int] = mapped_column(Integer)
    last_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_leaderboard_session_type_active", "session_type", "is_active"),
    )


class LeaderboardEntry(Base):
    """A user's standing in one session."""

    __tablename__ = "leaderboard_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    session_id: Mapped[int] = mapped_column(
        ForeignKey("leaderboard_sessions.id", ondelete="CASCADE"),
        index=True,
    )
    period: Mapped[str] = mapped_column(String(20))  # session type
    period_date: Mapped[str] = mapped_column(String(20))  # period key
    commits: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[int] = mapped_column(Integer, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_leaderboard_entry_user_session", "user_id", "session_id", unique=True),
        Index("ix_leaderboard_entry_session_rank", "session_id", "rank"),
    )
