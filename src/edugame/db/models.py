"""ORM models for the gamification engine.

Ownership:
- Ledger: XPAccount, XPTransaction
- Badge engine: StudentBadge (BadgeDefinition is an admin-managed catalog)
- Challenge engine: Challenge, ChallengeParticipation
- Leaderboard engine: Leaderboard, LeaderboardEntry
- Scheduler: JobRun

Student, SchoolClass and ClassEnrollment belong to the roster service and are
read-only here. ProblemAttempt, DailyActivity and StudentStreak are projections
written by the activity intake from learning-session events.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edugame.db.base import Base
from edugame.db.types import JSONType, UTCDateTime, utcnow


# ---------------------------------------------------------------------------
# Roster (read-only)
# ---------------------------------------------------------------------------


class Student(Base):
    """Maps to the roster 'students' table."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    grade_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    school_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="student", server_default="student")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class SchoolClass(Base):
    """Maps to the roster 'classes' table."""

    __tablename__ = "classes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    grade_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    school_id: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))


class ClassEnrollment(Base):
    """Maps to the roster 'class_enrollments' table."""

    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("student_id", "class_id", name="uq_class_enrollments_student_class"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    class_id: Mapped[int] = mapped_column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))


# ---------------------------------------------------------------------------
# Activity projections
# ---------------------------------------------------------------------------


class ProblemAttempt(Base):
    """One completed problem, as reported by the learning-session service."""

    __tablename__ = "problem_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    hints_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subject: Mapped[str | None] = mapped_column(String(64), nullable=True)
    topic: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)


class DailyActivity(Base):
    """Minutes of study per student per day."""

    __tablename__ = "daily_activity"
    __table_args__ = (UniqueConstraint("student_id", "activity_date", name="uq_daily_activity_student_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class StudentStreak(Base):
    """Latest consecutive-day streak reported for a student."""

    __tablename__ = "student_streaks"

    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), primary_key=True)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


# ---------------------------------------------------------------------------
# XP ledger
# ---------------------------------------------------------------------------


class XPAccount(Base):
    """Denormalized XP balance. Mutated only by the ledger."""

    __tablename__ = "student_xp"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), unique=True, nullable=False)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    spent_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    available_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    weekly_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    monthly_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_xp_earned: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class XPTransaction(Base):
    """Immutable XP log row. Never updated or deleted."""

    __tablename__ = "xp_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # earned | spent
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Static badge catalog entry."""

    __tablename__ = "badge_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)  # bronze | silver | gold | platinum
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    criteria: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    target_role: Mapped[str] = mapped_column(String(16), nullable=False, default="student")
    grade_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_secret: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class StudentBadge(Base):
    """Badge progress/earned state. One row per (student, badge)."""

    __tablename__ = "student_badges"
    __table_args__ = (UniqueConstraint("student_id", "badge_id", name="uq_student_badges_student_badge"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_earned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    earned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="raise")


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """Time-boxed goal. Active window is [start_date, end_date)."""

    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # daily | weekly | monthly | special
    metric: Mapped[str] = mapped_column(String(32), nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge_reward: Mapped[int | None] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=True)
    grade_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(64), nullable=True)
    school_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    class_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    generation_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class ChallengeParticipation(Base):
    """NotJoined -> Joined -> Completed. No transition back."""

    __tablename__ = "challenge_participation"
    __table_args__ = (
        UniqueConstraint("challenge_id", "student_id", name="uq_challenge_participation_challenge_student"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(Integer, ForeignKey("challenges.id"), nullable=False)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starting_baseline: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress_history: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    xp_awarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    badge_awarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    challenge: Mapped[Challenge] = relationship("Challenge", lazy="raise")


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class Leaderboard(Base):
    """Scoped, dated ranking definition."""

    __tablename__ = "leaderboards"
    __table_args__ = (
        Index(
            "uq_leaderboards_current_scope",
            "type",
            "scope",
            "scope_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)  # weekly | monthly
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class LeaderboardEntry(Base):
    """One ranked student on a leaderboard. Replaced wholesale on recompute."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("leaderboard_id", "student_id", name="uq_leaderboard_entries_board_student"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    leaderboard_id: Mapped[int] = mapped_column(Integer, ForeignKey("leaderboards.id"), nullable=False)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trend_direction: Mapped[str] = mapped_column(String(8), nullable=False)  # up | down | same | new
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Outbound events
# ---------------------------------------------------------------------------


class GamificationEvent(Base):
    """Notification-worthy record consumed by the notification service."""

    __tablename__ = "gamification_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    xp_earned: Mapped[int | None] = mapped_column(Integer, nullable=True)
    badge_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    challenge_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    leaderboard_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class JobRun(Base):
    """Claim row for a periodic job. One row per (job_name, period_key)."""

    __tablename__ = "job_runs"
    __table_args__ = (UniqueConstraint("job_name", "period_key", name="uq_job_runs_job_period"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False)
    period_key: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # running | completed | failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    instance_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
