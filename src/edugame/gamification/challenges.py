"""Challenge engine: joins, monotonic progress, exactly-once completion rewards.

Participation state only moves forward: NotJoined -> Joined -> Completed.

- ``join`` locks the challenge row, so the window/cap/duplicate checks and
  the counter increment see one consistent view.
- Progress updates lock the participation row and ignore values that do not
  exceed the current one.
- Rewards hang off the one-way ``xp_awarded``/``badge_awarded`` flags. Each
  flag is flipped by a conditional UPDATE and only the caller whose UPDATE
  matched a row pays out.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from edugame.config import Settings, get_settings
from edugame.db.models import (
    BadgeDefinition,
    Challenge,
    ChallengeParticipation,
    ClassEnrollment,
    ProblemAttempt,
    Student,
)
from edugame.db.types import utcnow
from edugame.errors import InvalidChallenge, NotFound
from edugame.events import CHALLENGE_COMPLETED, emit_event
from edugame.filters import FilterBuilder
from edugame.gamification.badges import BadgeEngine
from edugame.gamification.ledger import XPLedger
from edugame.leaderboards.periods import get_week_boundaries, get_week_iso
from edugame.store import Store

logger = logging.getLogger(__name__)

CHALLENGE_TYPES = frozenset({"daily", "weekly", "monthly", "special"})

PROBLEMS_SOLVED = "problems_solved"
PERFECT_PROBLEMS = "perfect_problems"
TIME_SPENT = "time_spent"
STREAK_DAYS = "streak_days"
ACCURACY_IMPROVEMENT = "accuracy_improvement"

METRICS = frozenset({PROBLEMS_SOLVED, PERFECT_PROBLEMS, TIME_SPENT, STREAK_DAYS, ACCURACY_IMPROVEMENT})

# activity kind -> challenge metric
ACTIVITY_METRICS: dict[str, str] = {
    "problem_solved": PROBLEMS_SOLVED,
    "perfect_problem": PERFECT_PROBLEMS,
    "time_spent": TIME_SPENT,
    "streak": STREAK_DAYS,
    "problem_attempted": ACCURACY_IMPROVEMENT,
}

_SUBJECT_SCOPED_KINDS = frozenset({"problem_solved", "perfect_problem", "problem_attempted"})


class NotJoinableReason(str, enum.Enum):
    INACTIVE = "inactive"
    OUTSIDE_WINDOW = "outside_window"
    FULL = "full"
    ALREADY_JOINED = "already_joined"
    OUT_OF_SCOPE = "out_of_scope"


@dataclass
class JoinResult:
    joined: bool
    reason: NotJoinableReason | None = None
    participation: ChallengeParticipation | None = None

    def __bool__(self) -> bool:
        return self.joined


@dataclass
class CompletionResult:
    xp_awarded: bool = False
    badge_awarded: bool = False
    xp_earned: int = 0


@dataclass
class ProgressResult:
    challenge_id: int
    updated: bool
    current_value: int
    completed: bool
    completion: CompletionResult | None = None


@dataclass
class ChallengeFilters:
    types: tuple[str, ...] | list[str] | None = None
    metric: str | None = None
    grade_level: str | None = None
    subject: str | None = None
    school_id: int | None = None
    class_id: int | None = None
    active_only: bool = True
    now: datetime | None = None
    limit: int = 50
    offset: int = 0

    def to_builder(self) -> FilterBuilder:
        builder = (
            FilterBuilder()
            .one_of(Challenge.type, self.types)
            .eq(Challenge.metric, self.metric)
            .eq_or_unset(Challenge.grade_level, self.grade_level)
            .eq_or_unset(Challenge.subject, self.subject)
            .eq_or_unset(Challenge.school_id, self.school_id)
            .eq_or_unset(Challenge.class_id, self.class_id)
        )
        if self.active_only:
            now = self.now or utcnow()
            builder.is_true(Challenge.is_active)
            builder.compare(Challenge.start_date, "le", now)
            builder.compare(Challenge.end_date, "gt", now)
        return builder


@dataclass
class ChallengeTemplate:
    slug: str
    title: str
    description: str
    metric: str
    target_value: int
    xp_reward: int
    extra: dict[str, Any] = field(default_factory=dict)


WEEKLY_TEMPLATES: list[ChallengeTemplate] = [
    ChallengeTemplate(
        "problem-sprint", "Problem Sprint", "Solve 20 problems this week", PROBLEMS_SOLVED, 20, 100
    ),
    ChallengeTemplate(
        "study-marathon", "Study Marathon", "Study for 120 minutes this week", TIME_SPENT, 120, 75
    ),
    ChallengeTemplate(
        "streak-keeper", "Streak Keeper", "Practice 5 days in a row", STREAK_DAYS, 5, 50
    ),
    ChallengeTemplate(
        "perfectionist", "Perfectionist", "Solve 10 problems without hints", PERFECT_PROBLEMS, 10, 80
    ),
]


def completion_xp_key(challenge_id: int, student_id: int) -> str:
    return f"challenge:{challenge_id}:{student_id}:xp"


class ChallengeEngine:
    """Owns ``challenges`` and ``challenge_participation``."""

    def __init__(
        self,
        store: Store,
        ledger: XPLedger,
        badges: BadgeEngine,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.badges = badges
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def create_challenge(
        self,
        *,
        title: str,
        type: str,  # noqa: A002
        metric: str,
        target_value: int,
        start_date: datetime,
        end_date: datetime,
        description: str = "",
        xp_reward: int = 0,
        badge_reward: int | None = None,
        grade_level: str | None = None,
        subject: str | None = None,
        school_id: int | None = None,
        class_id: int | None = None,
        created_by: int | None = None,
        max_participants: int | None = None,
    ) -> Challenge:
        if type not in CHALLENGE_TYPES:
            raise InvalidChallenge(f"unknown challenge type: {type}")
        if metric not in METRICS:
            raise InvalidChallenge(f"unknown challenge metric: {metric}")
        if target_value <= 0:
            raise InvalidChallenge("target_value must be positive")
        if xp_reward < 0:
            raise InvalidChallenge("xp_reward must not be negative")
        if end_date <= start_date:
            raise InvalidChallenge("end_date must be after start_date")
        if max_participants is not None and max_participants <= 0:
            raise InvalidChallenge("max_participants must be positive")

        async with self.store.transaction() as s:
            if badge_reward is not None and await s.get(BadgeDefinition, badge_reward) is None:
                raise InvalidChallenge(f"unknown badge reward: {badge_reward}")
            now = utcnow()
            challenge = Challenge(
                title=title,
                description=description,
                type=type,
                metric=metric,
                target_value=target_value,
                xp_reward=xp_reward,
                badge_reward=badge_reward,
                grade_level=grade_level,
                subject=subject,
                school_id=school_id,
                class_id=class_id,
                created_by=created_by,
                is_active=True,
                max_participants=max_participants,
                current_participants=0,
                start_date=start_date,
                end_date=end_date,
                created_at=now,
                updated_at=now,
            )
            s.add(challenge)
            await s.flush()
            logger.info("Created %s challenge %d (%s)", type, challenge.id, title)
            return challenge

    async def get_challenge(self, challenge_id: int) -> Challenge:
        async with self.store.transaction() as s:
            challenge = await s.get(Challenge, challenge_id)
            if challenge is None:
                raise NotFound("challenge", challenge_id)
            return challenge

    async def get_challenges(self, filters: ChallengeFilters | None = None) -> list[Challenge]:
        filters = filters or ChallengeFilters()
        async with self.store.transaction() as s:
            query = (
                filters.to_builder()
                .apply(select(Challenge))
                .order_by(Challenge.end_date.asc(), Challenge.id.asc())
                .limit(max(1, min(filters.limit, 100)))
                .offset(max(0, filters.offset))
            )
            return list((await s.execute(query)).scalars())

    async def generate_weekly_challenges(self, week_of: datetime | None = None) -> list[Challenge]:
        """Publish the weekly template set. Re-running for the same week is a no-op."""
        start, end = get_week_boundaries(week_of or utcnow())
        week_iso = get_week_iso(start)
        created: list[Challenge] = []
        async with self.store.transaction() as s:
            now = utcnow()
            for template in WEEKLY_TEMPLATES:
                stmt = (
                    self.store.insert(Challenge)
                    .values(
                        title=template.title,
                        description=template.description,
                        type="weekly",
                        metric=template.metric,
                        target_value=template.target_value,
                        xp_reward=template.xp_reward,
                        is_active=True,
                        current_participants=0,
                        start_date=start,
                        end_date=end,
                        generation_key=f"weekly:{week_iso}:{template.slug}",
                        created_at=now,
                        updated_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["generation_key"])
                    .returning(Challenge.id)
                )
                challenge_id = (await s.execute(stmt)).scalar_one_or_none()
                if challenge_id is not None:
                    created.append(await s.get(Challenge, challenge_id))
        logger.info("Generated %d weekly challenges for %s", len(created), week_iso)
        return created

    # ------------------------------------------------------------------
    # Participation
    # ------------------------------------------------------------------

    async def join(self, challenge_id: int, student_id: int, now: datetime | None = None) -> JoinResult:
        """Join a challenge. Not-joinable outcomes are returned, not raised."""
        now = now or utcnow()
        async with self.store.transaction() as s:
            challenge = (
                await s.execute(
                    select(Challenge)
                    .where(Challenge.id == challenge_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if challenge is None:
                raise NotFound("challenge", challenge_id)
            student = await s.get(Student, student_id)
            if student is None:
                raise NotFound("student", student_id)

            reason = await self._not_joinable_reason(s, challenge, student, now)
            if reason is not None:
                logger.debug("Student %d cannot join challenge %d: %s", student_id, challenge_id, reason.value)
                return JoinResult(joined=False, reason=reason)

            baseline = None
            if challenge.metric == ACCURACY_IMPROVEMENT:
                baseline = await self._trailing_accuracy(s, student_id, now)

            stmt = (
                self.store.insert(ChallengeParticipation)
                .values(
                    challenge_id=challenge_id,
                    student_id=student_id,
                    current_value=0,
                    starting_baseline=baseline,
                    progress_history=[],
                    is_completed=False,
                    xp_awarded=False,
                    badge_awarded=False,
                    joined_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["challenge_id", "student_id"])
                .returning(ChallengeParticipation.id)
            )
            participation_id = (await s.execute(stmt)).scalar_one_or_none()
            if participation_id is None:
                return JoinResult(joined=False, reason=NotJoinableReason.ALREADY_JOINED)

            challenge.current_participants += 1
            challenge.updated_at = now
            await s.flush()
            participation = await s.get(ChallengeParticipation, participation_id)
            logger.info("Student %d joined challenge %d", student_id, challenge_id)
            return JoinResult(joined=True, participation=participation)

    async def _not_joinable_reason(
        self,
        session: AsyncSession,
        challenge: Challenge,
        student: Student,
        now: datetime,
    ) -> NotJoinableReason | None:
        if not challenge.is_active:
            return NotJoinableReason.INACTIVE
        if not challenge.start_date <= now < challenge.end_date:
            return NotJoinableReason.OUTSIDE_WINDOW
        if not await self._in_scope(session, challenge, student):
            return NotJoinableReason.OUT_OF_SCOPE
        existing = (
            await session.execute(
                select(ChallengeParticipation.id).where(
                    ChallengeParticipation.challenge_id == challenge.id,
                    ChallengeParticipation.student_id == student.id,
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            return NotJoinableReason.ALREADY_JOINED
        if challenge.max_participants is not None and challenge.current_participants >= challenge.max_participants:
            return NotJoinableReason.FULL
        return None

    @staticmethod
    async def _in_scope(session: AsyncSession, challenge: Challenge, student: Student) -> bool:
        if challenge.school_id is not None and student.school_id != challenge.school_id:
            return False
        if challenge.grade_level is not None and student.grade_level != challenge.grade_level:
            return False
        if challenge.class_id is not None:
            enrolled = (
                await session.execute(
                    select(ClassEnrollment.id).where(
                        ClassEnrollment.class_id == challenge.class_id,
                        ClassEnrollment.student_id == student.id,
                        ClassEnrollment.is_active.is_(True),
                    )
                )
            ).scalar_one_or_none()
            if enrolled is None:
                return False
        return True

    async def _accuracy(
        self,
        session: AsyncSession,
        student_id: int,
        since: datetime,
        until: datetime | None = None,
        subject: str | None = None,
    ) -> tuple[int, float]:
        """(attempts, accuracy percent) for attempts created in [since, until)."""
        query = select(
            func.count(ProblemAttempt.id),
            func.coalesce(func.sum(case((ProblemAttempt.is_correct.is_(True), 1), else_=0)), 0),
        ).where(ProblemAttempt.student_id == student_id, ProblemAttempt.created_at >= since)
        if until is not None:
            query = query.where(ProblemAttempt.created_at < until)
        if subject is not None:
            query = query.where(ProblemAttempt.subject == subject)
        attempts, correct = (await session.execute(query)).one()
        attempts, correct = int(attempts), int(correct)
        return attempts, (correct / attempts * 100 if attempts else 0.0)

    async def _trailing_accuracy(self, session: AsyncSession, student_id: int, now: datetime) -> int:
        since = now - timedelta(days=self.settings.baseline_window_days)
        attempts, accuracy = await self._accuracy(session, student_id, since, until=now)
        return round(accuracy) if attempts else 0

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        challenge_id: int,
        student_id: int,
        new_value: int,
        context: dict[str, Any] | None = None,
    ) -> ProgressResult:
        """Raise a participation's value. Lower or equal values are ignored."""
        async with self.store.transaction() as s:
            participation = (
                await s.execute(
                    select(ChallengeParticipation)
                    .where(
                        ChallengeParticipation.challenge_id == challenge_id,
                        ChallengeParticipation.student_id == student_id,
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if participation is None:
                raise NotFound("participation", f"{challenge_id}/{student_id}")
            challenge = await s.get(Challenge, challenge_id)
            return await self._advance(s, challenge, participation, new_value, context)

    async def _advance(
        self,
        session: AsyncSession,
        challenge: Challenge,
        participation: ChallengeParticipation,
        new_value: int,
        context: dict[str, Any] | None,
    ) -> ProgressResult:
        """Apply one progress value to a locked participation row."""
        if participation.is_completed or new_value <= participation.current_value:
            result = ProgressResult(
                challenge_id=challenge.id,
                updated=False,
                current_value=participation.current_value,
                completed=participation.is_completed,
            )
            if participation.is_completed and not (participation.xp_awarded and participation.badge_awarded):
                result.completion = await self.complete_challenge(
                    challenge.id, participation.student_id, session=session
                )
            return result

        now = utcnow()
        entry = {
            "value": new_value,
            "previous": participation.current_value,
            "at": now.isoformat(),
        }
        if context:
            entry["context"] = context
        participation.progress_history = [*participation.progress_history, entry]
        participation.current_value = new_value
        participation.updated_at = now

        completed = new_value >= challenge.target_value
        if completed:
            participation.is_completed = True
            participation.completed_at = now
        await session.flush()

        result = ProgressResult(
            challenge_id=challenge.id,
            updated=True,
            current_value=new_value,
            completed=completed,
        )
        if completed:
            result.completion = await self.complete_challenge(
                challenge.id, participation.student_id, session=session
            )
        return result

    async def complete_challenge(
        self,
        challenge_id: int,
        student_id: int,
        *,
        session: AsyncSession | None = None,
    ) -> CompletionResult:
        """Pay out XP and badge rewards, each at most once per participation."""
        async with self.store.use(session) as s:
            challenge = await s.get(Challenge, challenge_id)
            if challenge is None:
                raise NotFound("challenge", challenge_id)

            outcome = CompletionResult()
            match = (
                ChallengeParticipation.challenge_id == challenge_id,
                ChallengeParticipation.student_id == student_id,
                ChallengeParticipation.is_completed.is_(True),
            )

            flipped = await s.execute(
                update(ChallengeParticipation)
                .where(*match, ChallengeParticipation.xp_awarded.is_(False))
                .values(xp_awarded=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 1:
                outcome.xp_awarded = True
                if challenge.xp_reward > 0:
                    earned = await self.ledger.earn(
                        student_id,
                        challenge.xp_reward,
                        source="challenge_completion",
                        description=f'Completed challenge: "{challenge.title}"',
                        idempotency_key=completion_xp_key(challenge_id, student_id),
                        details={"challenge_id": challenge_id},
                        session=s,
                    )
                    if earned.applied:
                        outcome.xp_earned = challenge.xp_reward
                await emit_event(
                    s,
                    student_id,
                    CHALLENGE_COMPLETED,
                    f'Challenge Complete: "{challenge.title}"',
                    f"+{outcome.xp_earned} XP",
                    xp_earned=outcome.xp_earned,
                    challenge_id=challenge_id,
                )

            flipped = await s.execute(
                update(ChallengeParticipation)
                .where(*match, ChallengeParticipation.badge_awarded.is_(False))
                .values(badge_awarded=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 1:
                outcome.badge_awarded = True
                if challenge.badge_reward is not None:
                    await self.badges.award(
                        student_id, challenge.badge_reward, {"challenge_id": challenge_id}, session=s
                    )

            if outcome.xp_awarded or outcome.badge_awarded:
                logger.info("Challenge %d rewards distributed to student %d", challenge_id, student_id)
            return outcome

    async def auto_advance(
        self,
        student_id: int,
        kind: str,
        delta: int,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[ProgressResult]:
        """Advance every active, incomplete participation whose metric matches ``kind``."""
        metric = ACTIVITY_METRICS.get(kind)
        if metric is None:
            return []
        metadata = metadata or {}
        now = now or utcnow()

        async with self.store.use(session) as s:
            rows = await s.execute(
                select(ChallengeParticipation)
                .join(ChallengeParticipation.challenge)
                .options(contains_eager(ChallengeParticipation.challenge))
                .where(
                    ChallengeParticipation.student_id == student_id,
                    ChallengeParticipation.is_completed.is_(False),
                    Challenge.metric == metric,
                    Challenge.is_active.is_(True),
                    Challenge.start_date <= now,
                    Challenge.end_date > now,
                )
                .order_by(ChallengeParticipation.id)
                .with_for_update(of=ChallengeParticipation)
                .execution_options(populate_existing=True)
            )
            results: list[ProgressResult] = []
            for participation in rows.scalars().all():
                challenge = participation.challenge
                if (
                    kind in _SUBJECT_SCOPED_KINDS
                    and challenge.subject is not None
                    and metadata.get("subject") != challenge.subject
                ):
                    continue
                new_value = await self._next_value(s, challenge, participation, metric, delta)
                if new_value is None:
                    continue
                result = await self._advance(s, challenge, participation, new_value, {"kind": kind, **metadata})
                if result.updated:
                    results.append(result)
            return results

    async def _next_value(
        self,
        session: AsyncSession,
        challenge: Challenge,
        participation: ChallengeParticipation,
        metric: str,
        delta: int,
    ) -> int | None:
        if metric == STREAK_DAYS:
            return delta
        if metric == ACCURACY_IMPROVEMENT:
            attempts, accuracy = await self._accuracy(
                session, participation.student_id, participation.joined_at, subject=challenge.subject
            )
            if attempts < self.settings.accuracy_improvement_min_attempts:
                return None
            # Falling below the baseline never lowers progress.
            return max(0, round(accuracy - (participation.starting_baseline or 0)))
        return participation.current_value + delta

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_student_challenges(
        self,
        student_id: int,
        include_completed: bool = True,
    ) -> list[ChallengeParticipation]:
        async with self.store.transaction() as s:
            query = (
                select(ChallengeParticipation)
                .join(ChallengeParticipation.challenge)
                .options(contains_eager(ChallengeParticipation.challenge))
                .where(ChallengeParticipation.student_id == student_id)
            )
            if not include_completed:
                query = query.where(ChallengeParticipation.is_completed.is_(False))
            query = query.order_by(Challenge.end_date.desc(), ChallengeParticipation.id.desc())
            return list((await s.execute(query)).scalars())

    async def get_challenge_leaderboard(self, challenge_id: int, limit: int = 10) -> list[ChallengeParticipation]:
        """Participants by current value, earlier completion first on ties."""
        async with self.store.transaction() as s:
            if await s.get(Challenge, challenge_id) is None:
                raise NotFound("challenge", challenge_id)
            result = await s.execute(
                select(ChallengeParticipation)
                .where(ChallengeParticipation.challenge_id == challenge_id)
                .order_by(
                    ChallengeParticipation.current_value.desc(),
                    ChallengeParticipation.completed_at.asc().nulls_last(),
                    ChallengeParticipation.joined_at.asc(),
                    ChallengeParticipation.id.asc(),
                )
                .limit(max(1, min(limit, 100)))
            )
            return list(result.scalars())
