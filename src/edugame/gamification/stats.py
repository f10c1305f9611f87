"""Derived per-student aggregates that badge criteria are evaluated against."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.db.models import (
    ChallengeParticipation,
    DailyActivity,
    ProblemAttempt,
    StudentBadge,
    StudentStreak,
    XPAccount,
)


@dataclass
class TopicStats:
    attempts: int = 0
    correct: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.attempts * 100 if self.attempts else 0.0


@dataclass
class StudentStats:
    total_attempts: int = 0
    problems_solved: int = 0
    perfect_problems: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    level: int = 1
    total_xp: int = 0
    total_minutes: int = 0
    challenges_completed: int = 0
    badges_earned: int = 0
    topics: dict[str, TopicStats] = field(default_factory=dict)

    @property
    def accuracy(self) -> float:
        return self.problems_solved / self.total_attempts * 100 if self.total_attempts else 0.0

    def metric(self, name: str) -> int:
        """Look up a countable metric by name. Unknown names raise KeyError."""
        if name not in COUNT_METRICS:
            raise KeyError(name)
        return int(getattr(self, name))


COUNT_METRICS = frozenset({
    "total_attempts",
    "problems_solved",
    "perfect_problems",
    "total_minutes",
    "total_xp",
    "challenges_completed",
    "badges_earned",
})


async def load_student_stats(
    session: AsyncSession,
    student_id: int,
    subject: str | None = None,
) -> StudentStats:
    """Aggregate a student's activity. ``subject`` narrows problem-based metrics."""
    stats = StudentStats()

    attempt_filter = [ProblemAttempt.student_id == student_id]
    if subject is not None:
        attempt_filter.append(ProblemAttempt.subject == subject)

    row = (
        await session.execute(
            select(
                func.count(ProblemAttempt.id),
                func.coalesce(func.sum(case((ProblemAttempt.is_correct.is_(True), 1), else_=0)), 0),
                func.coalesce(
                    func.sum(
                        case(
                            (and_(ProblemAttempt.is_correct.is_(True), ProblemAttempt.hints_used == 0), 1),
                            else_=0,
                        )
                    ),
                    0,
                ),
            ).where(*attempt_filter)
        )
    ).one()
    stats.total_attempts, stats.problems_solved, stats.perfect_problems = (int(v) for v in row)

    topic_rows = await session.execute(
        select(
            ProblemAttempt.topic,
            func.count(ProblemAttempt.id),
            func.coalesce(func.sum(case((ProblemAttempt.is_correct.is_(True), 1), else_=0)), 0),
        )
        .where(*attempt_filter, ProblemAttempt.topic.is_not(None))
        .group_by(ProblemAttempt.topic)
    )
    for topic, attempts, correct in topic_rows:
        stats.topics[topic] = TopicStats(attempts=int(attempts), correct=int(correct))

    streak = await session.get(StudentStreak, student_id)
    if streak is not None:
        stats.current_streak = streak.current_streak
        stats.longest_streak = streak.longest_streak

    account = (
        await session.execute(select(XPAccount).where(XPAccount.student_id == student_id))
    ).scalar_one_or_none()
    if account is not None:
        stats.level = account.level
        stats.total_xp = account.total_xp

    stats.total_minutes = int(
        (
            await session.execute(
                select(func.coalesce(func.sum(DailyActivity.minutes), 0)).where(
                    DailyActivity.student_id == student_id
                )
            )
        ).scalar_one()
    )

    stats.challenges_completed = (
        await session.execute(
            select(func.count(ChallengeParticipation.id)).where(
                ChallengeParticipation.student_id == student_id,
                ChallengeParticipation.is_completed.is_(True),
            )
        )
    ).scalar_one()

    stats.badges_earned = (
        await session.execute(
            select(func.count(StudentBadge.id)).where(
                StudentBadge.student_id == student_id,
                StudentBadge.is_earned.is_(True),
            )
        )
    ).scalar_one()

    return stats
