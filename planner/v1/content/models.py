"""
Content planner entities read and written by background jobs.

Only the columns the job system depends on are modelled here; the CRUD
surface owns the rest of each table.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from planner.infra.database import Base, UTCDateTime


class Plan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"
    TEAM = "TEAM"


class IdeaStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    POSTED = "POSTED"
    ARCHIVED = "ARCHIVED"


class TimestampMixin:
    """Mixin for timestamp fields."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class User(Base, TimestampMixin):
    """Account with plan, trial and quota state."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default=Plan.FREE.value)

    # Daily AI generation quota
    daily_ai_generations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_generation_reset: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Trial and billing
    free_trial_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    free_trial_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    subscription_ref: Mapped[str | None] = mapped_column(
        Text, comment="Billing gateway subscription identifier"
    )

    email_notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    ideas: Mapped[list["Idea"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    connections: Mapped[list["SocialConnection"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Idea(Base, TimestampMixin):
    """Planned piece of content; SCHEDULED ideas drive reminders and auto-posts."""

    __tablename__ = "ideas"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    caption: Mapped[str | None] = mapped_column(Text)
    hashtags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    niche: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IdeaStatus.DRAFT.value
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    posted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    user: Mapped["User"] = relationship(back_populates="ideas")

    __table_args__ = (Index("ix_ideas_status_scheduled_at", "status", "scheduled_at"),)


class SocialConnection(Base, TimestampMixin):
    """A user's linked publishing account on one platform."""

    __tablename__ = "social_connections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user: Mapped["User"] = relationship(back_populates="connections")


class DailyAnalytics(Base):
    """Aggregated platform metrics for one UTC day."""

    __tablename__ = "daily_analytics"

    day: Mapped[date] = mapped_column("date", Date, primary_key=True)
    total_ideas: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ideas_by_platform: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    ideas_by_niche: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    computed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
