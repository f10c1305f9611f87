"""Activity intake from the learning-session service.

Each inbound event runs as one transaction: record the activity projection,
credit XP, re-evaluate badges, advance challenges. A failure rolls the whole
event back, so a retried event never double-counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.db.models import DailyActivity, ProblemAttempt, Student, StudentStreak
from edugame.db.types import utcnow
from edugame.errors import NotFound
from edugame.gamification.badges import ActivityEvent, AwardResult, BadgeEngine
from edugame.gamification.challenges import ChallengeEngine, ProgressResult
from edugame.gamification.ledger import XPLedger
from edugame.gamification.xp_rules import problem_xp
from edugame.store import Store

logger = logging.getLogger(__name__)


@dataclass
class ActivityOutcome:
    duplicate: bool = False
    xp_earned: int = 0
    level: int | None = None
    badges: list[AwardResult] = field(default_factory=list)
    challenges: list[ProgressResult] = field(default_factory=list)


class ActivityIntake:
    """Drives ledger -> badges -> challenges for each activity event."""

    def __init__(
        self,
        store: Store,
        ledger: XPLedger,
        badges: BadgeEngine,
        challenges: ChallengeEngine,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.badges = badges
        self.challenges = challenges

    async def _require_student(self, session: AsyncSession, student_id: int) -> None:
        if await session.get(Student, student_id) is None:
            raise NotFound("student", student_id)

    async def _after_activity(
        self,
        session: AsyncSession,
        outcome: ActivityOutcome,
        student_id: int,
        event: ActivityEvent,
        advances: list[tuple[str, int]],
    ) -> None:
        outcome.badges += await self.badges.evaluate(student_id, event, session=session)
        for kind, delta in advances:
            outcome.challenges += await self.challenges.auto_advance(
                student_id, kind, delta, dict(event.details), session=session
            )
        # Completed challenges count towards badges too.
        if any(r.completed for r in outcome.challenges):
            outcome.badges += await self.badges.evaluate(student_id, event, session=session)

    async def problem_completed(
        self,
        student_id: int,
        difficulty: str,
        hints_used: int,
        is_correct: bool,
        attempt_id: int,
        *,
        topic: str | None = None,
        subject: str | None = None,
        session_id: int | None = None,
    ) -> ActivityOutcome:
        async def attempt() -> ActivityOutcome:
            async with self.store.transaction() as s:
                await self._require_student(s, student_id)
                outcome = ActivityOutcome()

                stmt = (
                    self.store.insert(ProblemAttempt)
                    .values(
                        attempt_id=attempt_id,
                        student_id=student_id,
                        difficulty=difficulty,
                        hints_used=hints_used,
                        is_correct=is_correct,
                        subject=subject,
                        topic=topic,
                        created_at=utcnow(),
                    )
                    .on_conflict_do_nothing(index_elements=["attempt_id"])
                    .returning(ProblemAttempt.id)
                )
                if (await s.execute(stmt)).scalar_one_or_none() is None:
                    logger.debug("Attempt %d already recorded", attempt_id)
                    outcome.duplicate = True
                    return outcome

                if is_correct:
                    streak = await s.get(StudentStreak, student_id)
                    amount = problem_xp(difficulty, hints_used, streak.current_streak if streak else 0)
                    earned = await self.ledger.earn(
                        student_id,
                        amount,
                        source="problem_completion",
                        description=f"Solved a {difficulty} problem",
                        idempotency_key=f"problem:{attempt_id}",
                        session_id=session_id,
                        details={"attempt_id": attempt_id, "difficulty": difficulty, "hints_used": hints_used},
                        session=s,
                    )
                    outcome.xp_earned = amount if earned.applied else 0
                    outcome.level = earned.account.level

                advances = [("problem_attempted", 1)]
                if is_correct:
                    advances.append(("problem_solved", 1))
                    if hints_used == 0:
                        advances.append(("perfect_problem", 1))
                event = ActivityEvent(
                    "problem_completed",
                    {"attempt_id": attempt_id, "subject": subject, "topic": topic},
                )
                await self._after_activity(s, outcome, student_id, event, advances)
                return outcome

        return await self.store.retry_transient(attempt)

    async def time_spent(self, student_id: int, activity_date: date, minutes_delta: int) -> ActivityOutcome:
        if minutes_delta <= 0:
            return ActivityOutcome()

        async def attempt() -> ActivityOutcome:
            async with self.store.transaction() as s:
                await self._require_student(s, student_id)
                outcome = ActivityOutcome()
                now = utcnow()
                stmt = self.store.insert(DailyActivity).values(
                    student_id=student_id,
                    activity_date=activity_date,
                    minutes=minutes_delta,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["student_id", "activity_date"],
                    set_={"minutes": DailyActivity.minutes + stmt.excluded.minutes, "updated_at": now},
                )
                await s.execute(stmt)
                event = ActivityEvent("time_spent", {"date": activity_date.isoformat(), "minutes": minutes_delta})
                await self._after_activity(s, outcome, student_id, event, [("time_spent", minutes_delta)])
                return outcome

        return await self.store.retry_transient(attempt)

    async def streak_updated(self, student_id: int, current_streak_days: int) -> ActivityOutcome:
        current_streak_days = max(0, current_streak_days)

        async def attempt() -> ActivityOutcome:
            async with self.store.transaction() as s:
                await self._require_student(s, student_id)
                outcome = ActivityOutcome()
                now = utcnow()
                await s.execute(
                    self.store.insert(StudentStreak)
                    .values(student_id=student_id, current_streak=0, longest_streak=0, updated_at=now)
                    .on_conflict_do_nothing(index_elements=["student_id"])
                )
                streak = (
                    await s.execute(
                        select(StudentStreak)
                        .where(StudentStreak.student_id == student_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()
                streak.current_streak = current_streak_days
                streak.longest_streak = max(streak.longest_streak, current_streak_days)
                streak.updated_at = now
                await s.flush()

                event = ActivityEvent("streak_updated", {"days": current_streak_days})
                await self._after_activity(s, outcome, student_id, event, [("streak", current_streak_days)])
                return outcome

        return await self.store.retry_transient(attempt)
