"""Leaderboard scoring strategies, one per leaderboard type.

Each strategy turns (population, period window) into ``ScoredStudent`` rows.
New leaderboard types are added by registering another strategy class.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import Select, and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.config import Settings
from edugame.db.models import (
    BadgeDefinition,
    Challenge,
    ChallengeParticipation,
    ProblemAttempt,
    Student,
    StudentBadge,
    StudentStreak,
    XPTransaction,
)
from edugame.errors import InvalidLeaderboard
from edugame.leaderboards.periods import MONTHLY, WEEKLY
from edugame.leaderboards.ranking import ScoredStudent

CHALLENGE_WEIGHTS = {"daily": 1, "weekly": 2, "monthly": 3, "special": 3}
TIER_WEIGHTS = {"bronze": 1, "silver": 2, "gold": 3, "platinum": 5}

STRATEGIES: dict[str, type[LeaderboardStrategy]] = {}


def register(cls: type[LeaderboardStrategy]) -> type[LeaderboardStrategy]:
    STRATEGIES[cls.type] = cls
    return cls


def get_strategy(leaderboard_type: str, settings: Settings) -> LeaderboardStrategy:
    cls = STRATEGIES.get(leaderboard_type)
    if cls is None:
        raise InvalidLeaderboard(f"unknown leaderboard type: {leaderboard_type}")
    return cls(settings)


class LeaderboardStrategy:
    type: ClassVar[str]
    period_type: ClassVar[str]

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def compute(
        self,
        session: AsyncSession,
        population: Select[Any],
        start: datetime,
        end: datetime,
    ) -> list[ScoredStudent]:
        raise NotImplementedError


@register
class WeeklyXP(LeaderboardStrategy):
    """XP earned in the window. Every student in scope is ranked, zero included."""

    type = "weekly_xp"
    period_type = WEEKLY

    async def compute(self, session, population, start, end):
        earned = and_(
            XPTransaction.student_id == Student.id,
            XPTransaction.amount > 0,
            XPTransaction.created_at >= start,
            XPTransaction.created_at < end,
        )
        rows = await session.execute(
            select(
                Student.id,
                func.coalesce(func.sum(XPTransaction.amount), 0),
                func.count(XPTransaction.id),
            )
            .outerjoin(XPTransaction, earned)
            .where(Student.id.in_(population))
            .group_by(Student.id)
        )
        return [
            ScoredStudent(student_id, float(xp), (-int(count),), {"transactions": int(count)})
            for student_id, xp, count in rows
        ]


@register
class MonthlyAccuracy(LeaderboardStrategy):
    """Correct/attempted percentage. Students under the attempt floor are left out."""

    type = "monthly_accuracy"
    period_type = MONTHLY

    async def compute(self, session, population, start, end):
        attempts = func.count(ProblemAttempt.id)
        correct = func.coalesce(func.sum(case((ProblemAttempt.is_correct.is_(True), 1), else_=0)), 0)
        rows = await session.execute(
            select(ProblemAttempt.student_id, attempts, correct)
            .where(
                ProblemAttempt.student_id.in_(population),
                ProblemAttempt.created_at >= start,
                ProblemAttempt.created_at < end,
            )
            .group_by(ProblemAttempt.student_id)
            .having(attempts >= self.settings.accuracy_min_attempts)
        )
        scored = []
        for student_id, n, ok in rows:
            n, ok = int(n), int(ok)
            scored.append(
                ScoredStudent(student_id, round(ok / n * 100, 2), (-n,), {"attempts": n, "correct": ok})
            )
        return scored


@register
class ChallengeCompletion(LeaderboardStrategy):
    """Completed challenges weighted by challenge type. Earlier finishers win ties."""

    type = "challenge_completion"
    period_type = MONTHLY

    async def compute(self, session, population, start, end):
        weight = case(
            *[(Challenge.type == kind, w) for kind, w in CHALLENGE_WEIGHTS.items()],
            else_=1,
        )
        rows = await session.execute(
            select(
                ChallengeParticipation.student_id,
                func.sum(weight),
                func.count(ChallengeParticipation.id),
                func.max(ChallengeParticipation.completed_at),
            )
            .join(Challenge, Challenge.id == ChallengeParticipation.challenge_id)
            .where(
                ChallengeParticipation.student_id.in_(population),
                ChallengeParticipation.is_completed.is_(True),
                ChallengeParticipation.completed_at >= start,
                ChallengeParticipation.completed_at < end,
            )
            .group_by(ChallengeParticipation.student_id)
        )
        return [
            ScoredStudent(student_id, float(score), (last,), {"completed": int(count)})
            for student_id, score, count, last in rows
        ]


@register
class StreakLeaders(LeaderboardStrategy):
    """Current consecutive-day streak; longest streak breaks ties."""

    type = "streak_leaders"
    period_type = WEEKLY

    async def compute(self, session, population, start, end):
        rows = await session.execute(
            select(StudentStreak.student_id, StudentStreak.current_streak, StudentStreak.longest_streak).where(
                StudentStreak.student_id.in_(population),
                StudentStreak.current_streak > 0,
            )
        )
        return [
            ScoredStudent(student_id, float(current), (-longest,), {"longest_streak": longest})
            for student_id, current, longest in rows
        ]


@register
class BadgeCount(LeaderboardStrategy):
    """Badges earned so far, weighted by tier; raw count breaks ties."""

    type = "badge_count"
    period_type = MONTHLY

    async def compute(self, session, population, start, end):
        weight = case(
            *[(BadgeDefinition.tier == tier, w) for tier, w in TIER_WEIGHTS.items()],
            else_=1,
        )
        rows = await session.execute(
            select(StudentBadge.student_id, func.sum(weight), func.count(StudentBadge.id))
            .join(BadgeDefinition, BadgeDefinition.id == StudentBadge.badge_id)
            .where(
                StudentBadge.student_id.in_(population),
                StudentBadge.is_earned.is_(True),
                StudentBadge.earned_at < end,
            )
            .group_by(StudentBadge.student_id)
        )
        return [
            ScoredStudent(student_id, float(score), (-int(count),), {"badges": int(count)})
            for student_id, score, count in rows
        ]
