"""Badge engine: criteria evaluation, at-most-once awards, progress tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from edugame.db.models import BadgeDefinition, Student, StudentBadge
from edugame.db.types import utcnow
from edugame.errors import NotFound
from edugame.events import BADGE_EARNED, emit_event
from edugame.filters import FilterBuilder
from edugame.gamification.criteria import CriteriaError, parse_criteria
from edugame.gamification.ledger import XPLedger
from edugame.gamification.stats import StudentStats, load_student_stats
from edugame.store import Store

logger = logging.getLogger(__name__)


@dataclass
class ActivityEvent:
    """What just happened to the student. Drives evaluation, never criteria values."""

    kind: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class AwardResult:
    badge_id: int
    awarded: bool
    xp_earned: int = 0

    def __bool__(self) -> bool:
        return self.awarded


def badge_idempotency_key(badge_id: int, student_id: int) -> str:
    return f"badge:{badge_id}:{student_id}"


class BadgeEngine:
    """Owns ``student_badges``. Calls the ledger for badge XP."""

    def __init__(self, store: Store, ledger: XPLedger) -> None:
        self.store = store
        self.ledger = ledger

    async def award(
        self,
        student_id: int,
        badge_id: int,
        metadata: dict[str, Any] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> AwardResult:
        """Award a badge. Only the call that flips ``is_earned`` credits XP.

        Returns an AwardResult whose truthiness says whether this call
        newly awarded the badge.
        """
        async with self.store.use(session) as s:
            badge = await s.get(BadgeDefinition, badge_id)
            if badge is None:
                raise NotFound("badge", badge_id)
            if await s.get(Student, student_id) is None:
                raise NotFound("student", student_id)

            now = utcnow()
            stmt = self.store.insert(StudentBadge).values({
                StudentBadge.student_id: student_id,
                StudentBadge.badge_id: badge_id,
                StudentBadge.progress: 100.0,
                StudentBadge.is_earned: True,
                StudentBadge.earned_at: now,
                StudentBadge.details: metadata,
                StudentBadge.created_at: now,
                StudentBadge.updated_at: now,
            })
            stmt = stmt.on_conflict_do_update(
                index_elements=["student_id", "badge_id"],
                set_={
                    "is_earned": True,
                    "earned_at": now,
                    "progress": 100.0,
                    "updated_at": now,
                },
                where=StudentBadge.is_earned.is_(False),
            ).returning(StudentBadge.id)
            row_id = (await s.execute(stmt)).scalar_one_or_none()

            if row_id is None:
                logger.debug("Badge %d already earned by student %d", badge_id, student_id)
                return AwardResult(badge_id=badge_id, awarded=False)

            xp = 0
            if badge.xp_reward > 0:
                earned = await self.ledger.earn(
                    student_id,
                    badge.xp_reward,
                    source="badge",
                    description=f'Earned badge: "{badge.name}"',
                    idempotency_key=badge_idempotency_key(badge_id, student_id),
                    details={"badge_id": badge_id},
                    session=s,
                )
                xp = badge.xp_reward if earned.applied else 0

            await emit_event(
                s,
                student_id,
                BADGE_EARNED,
                f'Badge Earned: "{badge.name}"',
                f"+{xp} XP. {badge.description}",
                xp_earned=xp,
                badge_id=badge_id,
            )
            logger.info("Awarded badge %s to student %d", badge.slug, student_id)
            return AwardResult(badge_id=badge_id, awarded=True, xp_earned=xp)

    async def update_progress(
        self,
        student_id: int,
        badge_id: int,
        progress: float,
        *,
        session: AsyncSession | None = None,
    ) -> AwardResult:
        """Upsert progress (clamped to 0-100). Reaching 100 takes the award path."""
        progress = max(0.0, min(100.0, float(progress)))
        if progress >= 100.0:
            return await self.award(student_id, badge_id, {"trigger": "progress"}, session=session)

        async with self.store.use(session) as s:
            if await s.get(BadgeDefinition, badge_id) is None:
                raise NotFound("badge", badge_id)
            now = utcnow()
            stmt = self.store.insert(StudentBadge).values(
                student_id=student_id,
                badge_id=badge_id,
                progress=progress,
                is_earned=False,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["student_id", "badge_id"],
                set_={"progress": progress, "updated_at": now},
                where=StudentBadge.is_earned.is_(False),
            )
            await s.execute(stmt)
        return AwardResult(badge_id=badge_id, awarded=False)

    async def evaluate(
        self,
        student_id: int,
        event: ActivityEvent | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[AwardResult]:
        """Award every relevant, unearned badge whose criteria now hold.

        Returns only the badges newly awarded by this call.
        """
        if session is not None:
            return await self._evaluate(session, student_id, event)

        async def attempt() -> list[AwardResult]:
            async with self.store.transaction() as s:
                return await self._evaluate(s, student_id, event)

        return await self.store.retry_transient(attempt)

    async def _evaluate(
        self,
        session: AsyncSession,
        student_id: int,
        event: ActivityEvent | None,
    ) -> list[AwardResult]:
        student = await session.get(Student, student_id)
        if student is None:
            raise NotFound("student", student_id)

        filters = (
            FilterBuilder()
            .is_true(BadgeDefinition.is_active)
            .eq(BadgeDefinition.target_role, student.role)
            .eq_or_unset(BadgeDefinition.grade_level, student.grade_level)
        )
        query = filters.apply(select(BadgeDefinition)).order_by(
            BadgeDefinition.display_order, BadgeDefinition.id
        )
        definitions = list((await session.execute(query)).scalars())

        awarded: list[AwardResult] = []
        trigger = {"trigger": event.kind} if event else None

        # Badge XP can raise the level, which can satisfy a level badge.
        while True:
            earned_ids = set(
                (
                    await session.execute(
                        select(StudentBadge.badge_id).where(
                            StudentBadge.student_id == student_id,
                            StudentBadge.is_earned.is_(True),
                        )
                    )
                ).scalars()
            )
            stats_by_subject: dict[str | None, StudentStats] = {}
            newly: list[AwardResult] = []

            for badge in definitions:
                if badge.id in earned_ids:
                    continue
                try:
                    criterion = parse_criteria(badge.criteria)
                except CriteriaError:
                    logger.warning("Skipping badge %s with invalid criteria", badge.slug, exc_info=True)
                    continue

                if badge.subject not in stats_by_subject:
                    stats_by_subject[badge.subject] = await load_student_stats(
                        session, student_id, badge.subject
                    )
                stats = stats_by_subject[badge.subject]

                if criterion.is_satisfied(stats):
                    result = await self.award(student_id, badge.id, trigger, session=session)
                    if result:
                        newly.append(result)
                else:
                    progress = criterion.progress(stats)
                    if progress > 0:
                        await self.update_progress(student_id, badge.id, progress, session=session)

            if not newly:
                break
            awarded.extend(newly)

        return awarded

    async def list_definitions(
        self,
        *,
        category: str | None = None,
        grade_level: str | None = None,
        subject: str | None = None,
        target_role: str = "student",
        include_secret: bool = False,
    ) -> list[BadgeDefinition]:
        filters = (
            FilterBuilder()
            .is_true(BadgeDefinition.is_active)
            .eq(BadgeDefinition.target_role, target_role)
            .eq(BadgeDefinition.category, category)
            .eq_or_unset(BadgeDefinition.grade_level, grade_level)
            .eq_or_unset(BadgeDefinition.subject, subject)
        )
        if not include_secret:
            filters.is_false(BadgeDefinition.is_secret)
        async with self.store.transaction() as s:
            query = filters.apply(select(BadgeDefinition)).order_by(
                BadgeDefinition.category, BadgeDefinition.display_order, BadgeDefinition.id
            )
            return list((await s.execute(query)).scalars())

    async def get_student_badges(
        self,
        student_id: int,
        include_progress: bool = True,
    ) -> list[StudentBadge]:
        """Earned badges, plus in-progress ones when ``include_progress``."""
        async with self.store.transaction() as s:
            query = (
                select(StudentBadge)
                .join(StudentBadge.badge)
                .options(contains_eager(StudentBadge.badge))
                .where(StudentBadge.student_id == student_id)
            )
            if not include_progress:
                query = query.where(StudentBadge.is_earned.is_(True))
            query = query.order_by(
                StudentBadge.is_earned.desc(), StudentBadge.earned_at.desc(), BadgeDefinition.display_order
            )
            rows = []
            for student_badge in (await s.execute(query)).scalars():
                # Secret badges stay hidden until earned.
                if student_badge.badge.is_secret and not student_badge.is_earned:
                    continue
                rows.append(student_badge)
            return rows
