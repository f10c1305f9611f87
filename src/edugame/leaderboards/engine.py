"""Leaderboard engine: creation, recomputation, rotation and archival.

Every board has one (type, scope, scope_id) key. At most one board per key is
current; a partial unique index on ``is_current`` backs this. Recomputation
replaces a board's entries inside one transaction, holding the board row lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.config import Settings, get_settings
from edugame.db.models import Leaderboard, LeaderboardEntry
from edugame.db.types import utcnow
from edugame.errors import NotFound
from edugame.events import LEADERBOARD_TOP, emit_event
from edugame.filters import FilterBuilder
from edugame.leaderboards.periods import period_boundaries
from edugame.leaderboards.ranking import RankedEntry, rank_students
from edugame.leaderboards.scopes import (
    CLASS,
    GRADE,
    SCHOOL,
    active_scope_keys_query,
    grade_scope_id,
    population_query,
    validate_scope,
)
from edugame.leaderboards.strategies import STRATEGIES, get_strategy
from edugame.store import Store

logger = logging.getLogger(__name__)

_TYPE_TITLES = {
    "weekly_xp": "Weekly XP",
    "monthly_accuracy": "Monthly Accuracy",
    "challenge_completion": "Challenge Champions",
    "streak_leaders": "Streak Leaders",
    "badge_count": "Badge Collectors",
}


@dataclass
class LeaderboardPage:
    leaderboard: Leaderboard
    entries: list[LeaderboardEntry]
    total: int


@dataclass
class StudentPosition:
    leaderboard: Leaderboard
    entry: LeaderboardEntry

    @property
    def rank_change(self) -> int | None:
        if self.entry.previous_rank is None:
            return None
        return self.entry.previous_rank - self.entry.rank


class LeaderboardEngine:
    """Owns ``leaderboards`` and ``leaderboard_entries``."""

    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_leaderboard(
        self,
        leaderboard_type: str,
        scope: str,
        scope_id: str,
        now: datetime | None = None,
    ) -> Leaderboard:
        """Insert a new current board for the key, demoting the old one, and rank it."""
        strategy = get_strategy(leaderboard_type, self.settings)
        scope_id = str(scope_id)
        validate_scope(scope, scope_id)
        start, end = period_boundaries(strategy.period_type, now or utcnow())

        try:
            return await self._create_current(leaderboard_type, scope, scope_id, strategy.period_type, start, end)
        except IntegrityError:
            # Another instance made a current board for this key first; demote it and retry once.
            logger.debug("Current leaderboard race on %s %s:%s, retrying", leaderboard_type, scope, scope_id)
            return await self._create_current(leaderboard_type, scope, scope_id, strategy.period_type, start, end)

    async def _create_current(
        self,
        leaderboard_type: str,
        scope: str,
        scope_id: str,
        period_type: str,
        start: datetime,
        end: datetime,
    ) -> Leaderboard:
        async with self.store.transaction() as s:
            ts = utcnow()
            await s.execute(
                update(Leaderboard)
                .where(
                    Leaderboard.type == leaderboard_type,
                    Leaderboard.scope == scope,
                    Leaderboard.scope_id == scope_id,
                    Leaderboard.is_current.is_(True),
                )
                .values(is_current=False, updated_at=ts)
                .execution_options(synchronize_session=False)
            )
            board = Leaderboard(
                type=leaderboard_type,
                scope=scope,
                scope_id=scope_id,
                period_type=period_type,
                period_start=start,
                period_end=end,
                is_active=True,
                is_current=True,
                created_at=ts,
                updated_at=ts,
            )
            s.add(board)
            await s.flush()
            await self._recompute(s, board)
        logger.info(
            "Created leaderboard %d (%s %s:%s from %s)",
            board.id, leaderboard_type, scope, scope_id, start.date().isoformat(),
        )
        return board

    async def recompute(self, leaderboard_id: int) -> list[RankedEntry]:
        """Re-rank a board. Archived boards are left untouched."""
        async with self.store.transaction() as s:
            board = (
                await s.execute(
                    select(Leaderboard)
                    .where(Leaderboard.id == leaderboard_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if board is None:
                raise NotFound("leaderboard", leaderboard_id)
            if not board.is_active:
                logger.debug("Skipping recompute of archived leaderboard %d", leaderboard_id)
                return []
            return await self._recompute(s, board)

    async def _recompute(self, session: AsyncSession, board: Leaderboard) -> list[RankedEntry]:
        strategy = get_strategy(board.type, self.settings)
        population = population_query(board.scope, board.scope_id)
        scored = await strategy.compute(session, population, board.period_start, board.period_end)
        previous = await self._previous_ranks(session, board)
        ranked = rank_students(scored, previous)

        await session.execute(
            delete(LeaderboardEntry)
            .where(LeaderboardEntry.leaderboard_id == board.id)
            .execution_options(synchronize_session=False)
        )
        now = utcnow()
        session.add_all([
            LeaderboardEntry(
                leaderboard_id=board.id,
                student_id=e.student_id,
                rank=e.rank,
                score=e.score,
                previous_rank=e.previous_rank,
                trend_direction=e.trend_direction,
                details=e.details or None,
                created_at=now,
            )
            for e in ranked
        ])
        board.updated_at = now
        await session.flush()

        top = self.settings.leaderboard_notify_top_rank
        title = _TYPE_TITLES.get(board.type, board.type)
        for e in ranked:
            if e.rank > top:
                break
            if e.score <= 0 or (e.previous_rank is not None and e.previous_rank <= top):
                continue
            await emit_event(
                session,
                e.student_id,
                LEADERBOARD_TOP,
                f"Top {top} on {title}!",
                f"You are now #{e.rank} on the {board.scope} {title} leaderboard",
                leaderboard_id=board.id,
            )
        return ranked

    async def _previous_ranks(self, session: AsyncSession, board: Leaderboard) -> dict[int, int]:
        """Ranks from the board's own last snapshot, else from the board it replaced."""
        own = await session.execute(
            select(LeaderboardEntry.student_id, LeaderboardEntry.rank).where(
                LeaderboardEntry.leaderboard_id == board.id
            )
        )
        ranks = {student_id: rank for student_id, rank in own}
        if ranks:
            return ranks

        prior_id = (
            await session.execute(
                select(Leaderboard.id)
                .where(
                    Leaderboard.type == board.type,
                    Leaderboard.scope == board.scope,
                    Leaderboard.scope_id == board.scope_id,
                    Leaderboard.id != board.id,
                    Leaderboard.period_start <= board.period_start,
                )
                .order_by(Leaderboard.period_start.desc(), Leaderboard.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if prior_id is None:
            return {}
        prior = await session.execute(
            select(LeaderboardEntry.student_id, LeaderboardEntry.rank).where(
                LeaderboardEntry.leaderboard_id == prior_id
            )
        )
        return {student_id: rank for student_id, rank in prior}

    async def archive(self, cutoff: datetime) -> int:
        """Deactivate boards whose period ended at or before ``cutoff``. Nothing is deleted."""
        async with self.store.transaction() as s:
            result = await s.execute(
                update(Leaderboard)
                .where(Leaderboard.period_end <= cutoff, Leaderboard.is_active.is_(True))
                .values(is_active=False, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Archived %d leaderboards ended before %s", result.rowcount, cutoff.isoformat())
        return result.rowcount

    async def rotate(self, period_type: str, now: datetime | None = None) -> list[Leaderboard]:
        """Start a new board for every current board of ``period_type`` whose period has ended."""
        now = now or utcnow()
        async with self.store.transaction() as s:
            stale = (
                await s.execute(
                    select(Leaderboard.type, Leaderboard.scope, Leaderboard.scope_id).where(
                        Leaderboard.is_current.is_(True),
                        Leaderboard.period_type == period_type,
                        Leaderboard.period_end <= now,
                    )
                )
            ).all()
        created = []
        for leaderboard_type, scope, scope_id in stale:
            created.append(await self.create_leaderboard(leaderboard_type, scope, scope_id, now))
        logger.info("Rotated %d %s leaderboards", len(created), period_type)
        return created

    async def ensure_boards(self, now: datetime | None = None, period_type: str | None = None) -> list[Leaderboard]:
        """Create a current board for every active class, school and grade key that lacks one."""
        now = now or utcnow()
        async with self.store.transaction() as s:
            keys: set[tuple[str, str]] = set()
            for class_id, school_id, grade_level in await s.execute(active_scope_keys_query()):
                keys.add((CLASS, str(class_id)))
                keys.add((SCHOOL, str(school_id)))
                if grade_level:
                    keys.add((GRADE, grade_scope_id(school_id, grade_level)))
            existing = set(
                map(
                    tuple,
                    await s.execute(
                        select(Leaderboard.type, Leaderboard.scope, Leaderboard.scope_id).where(
                            Leaderboard.is_current.is_(True)
                        )
                    ),
                )
            )

        created = []
        for leaderboard_type, cls in sorted(STRATEGIES.items()):
            if period_type is not None and cls.period_type != period_type:
                continue
            for scope, scope_id in sorted(keys):
                if (leaderboard_type, scope, scope_id) not in existing:
                    created.append(await self.create_leaderboard(leaderboard_type, scope, scope_id, now))
        return created

    async def refresh_current(self) -> int:
        """Recompute every current, active board."""
        async with self.store.transaction() as s:
            ids = list(
                (
                    await s.execute(
                        select(Leaderboard.id).where(
                            Leaderboard.is_current.is_(True), Leaderboard.is_active.is_(True)
                        ).order_by(Leaderboard.id)
                    )
                ).scalars()
            )
        for leaderboard_id in ids:
            await self.store.retry_transient(lambda lid=leaderboard_id: self.recompute(lid))
        return len(ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _page(self, session: AsyncSession, board: Leaderboard, limit: int, offset: int) -> LeaderboardPage:
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        total = (
            await session.execute(
                select(func.count(LeaderboardEntry.id)).where(LeaderboardEntry.leaderboard_id == board.id)
            )
        ).scalar_one()
        entries = await session.execute(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.leaderboard_id == board.id)
            .order_by(LeaderboardEntry.rank.asc())
            .limit(limit)
            .offset(offset)
        )
        return LeaderboardPage(leaderboard=board, entries=list(entries.scalars()), total=total)

    async def get_leaderboard(
        self,
        leaderboard_type: str,
        scope: str,
        scope_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> LeaderboardPage:
        """Entries of the current board for a key."""
        async with self.store.transaction() as s:
            board = (
                await s.execute(
                    select(Leaderboard).where(
                        Leaderboard.type == leaderboard_type,
                        Leaderboard.scope == scope,
                        Leaderboard.scope_id == str(scope_id),
                        Leaderboard.is_current.is_(True),
                    )
                )
            ).scalar_one_or_none()
            if board is None:
                raise NotFound("leaderboard", f"{leaderboard_type}/{scope}/{scope_id}")
            return await self._page(s, board, limit, offset)

    async def get_entries(self, leaderboard_id: int, limit: int = 50, offset: int = 0) -> LeaderboardPage:
        async with self.store.transaction() as s:
            board = await s.get(Leaderboard, leaderboard_id)
            if board is None:
                raise NotFound("leaderboard", leaderboard_id)
            return await self._page(s, board, limit, offset)

    async def get_student_positions(self, student_id: int, limit: int = 20) -> list[StudentPosition]:
        """The student's entry on every current board they appear on."""
        async with self.store.transaction() as s:
            rows = await s.execute(
                select(LeaderboardEntry, Leaderboard)
                .join(Leaderboard, Leaderboard.id == LeaderboardEntry.leaderboard_id)
                .where(
                    LeaderboardEntry.student_id == student_id,
                    Leaderboard.is_current.is_(True),
                    Leaderboard.is_active.is_(True),
                )
                .order_by(LeaderboardEntry.rank.asc(), Leaderboard.type, Leaderboard.scope)
                .limit(max(1, min(limit, 100)))
            )
            return [StudentPosition(leaderboard=board, entry=entry) for entry, board in rows]

    async def get_history(
        self,
        leaderboard_type: str | None = None,
        scope: str | None = None,
        scope_id: str | None = None,
        include_archived: bool = True,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Leaderboard]:
        filters = (
            FilterBuilder()
            .eq(Leaderboard.type, leaderboard_type)
            .eq(Leaderboard.scope, scope)
            .eq(Leaderboard.scope_id, None if scope_id is None else str(scope_id))
        )
        if not include_archived:
            filters.is_true(Leaderboard.is_active)
        async with self.store.transaction() as s:
            query = (
                filters.apply(select(Leaderboard))
                .order_by(Leaderboard.period_start.desc(), Leaderboard.id.desc())
                .limit(max(1, min(limit, 100)))
                .offset(max(0, offset))
            )
            return list((await s.execute(query)).scalars())
