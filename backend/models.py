"""
SQLAlchemy database models for Cleany.
Defines the per-user row store: learned sender preferences, weekly counters,
the learned action log and the inbox snapshot cache.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from db import Base


class UserPreference(Base):
    """
    Learned mapping from a sender domain to the action the user usually takes.

    Updates go through optimistic locking on ``version``: a concurrent writer
    that read an older version fails its flush with StaleDataError and the
    learner retries against the fresh row.
    """
    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "sender_pattern", name="uq_preference_user_pattern"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sender_pattern: Mapped[str] = mapped_column(String(255), nullable=False)  # domain
    preferred_action: Mapped[str] = mapped_column(
        String(50),
        nullable=False
        # Valid values: keep, delete, unsubscribe
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.6)
    action_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<UserPreference(pattern={self.sender_pattern}, action={self.preferred_action}, "
            f"confidence={self.confidence_score})>"
        )


class WeeklySummary(Base):
    """
    Per-user counters bucketed by the Sunday that starts the week.
    """
    __tablename__ = "weekly_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_summary_user_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    emails_processed: Mapped[int] = mapped_column(Integer, default=0)
    emails_kept: Mapped[int] = mapped_column(Integer, default=0)
    emails_deleted: Mapped[int] = mapped_column(Integer, default=0)
    emails_unsubscribed: Mapped[int] = mapped_column(Integer, default=0)
    auto_actions_applied: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<WeeklySummary(week_start={self.week_start}, processed={self.emails_processed})>"


class EmailActionLog(Base):
    """
    Append-only log of the actions the learner was fed.
    """
    __tablename__ = "email_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email_sender: Mapped[str] = mapped_column(String(512), nullable=False)
    email_subject: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<EmailActionLog(sender={self.email_sender}, action={self.action})>"


Index("idx_email_actions_user", EmailActionLog.user_id, EmailActionLog.created_at)


class InboxSnapshot(Base):
    """
    Short-lived cache of the last fetched inbox, one row per (user, cache key).
    """
    __tablename__ = "inbox_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "cache_key", name="uq_snapshot_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    cache_key: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<InboxSnapshot(user_id={self.user_id}, created_at={self.created_at})>"
