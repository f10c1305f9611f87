"""XP ledger: balances plus an immutable, idempotent transaction log.

Every mutation locks the student's ``student_xp`` row for the length of the
transaction. Idempotency is enforced by the unique index on
``xp_transactions.idempotency_key``: the insert runs inside a savepoint and a
uniqueness violation turns the call into a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.config import Settings, get_settings
from edugame.db.models import Student, XPAccount, XPTransaction
from edugame.db.types import utcnow
from edugame.errors import InsufficientBalance, InvalidAmount, NotFound
from edugame.events import LEVEL_UP, XP_MILESTONE, emit_event
from edugame.gamification.level_thresholds import compute_level, level_for_xp
from edugame.store import Store

logger = logging.getLogger(__name__)

EARNED = "earned"
SPENT = "spent"


@dataclass
class EarnResult:
    account: XPAccount
    transaction: XPTransaction | None
    applied: bool
    previous_level: int

    @property
    def leveled_up(self) -> bool:
        return self.applied and self.account.level > self.previous_level


class XPLedger:
    """Owns ``student_xp`` and ``xp_transactions``."""

    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def _ensure_account(self, session: AsyncSession, student_id: int) -> None:
        if await session.get(Student, student_id) is None:
            raise NotFound("student", student_id)
        now = utcnow()
        stmt = (
            self.store.insert(XPAccount)
            .values(
                student_id=student_id,
                total_xp=0,
                spent_xp=0,
                available_xp=0,
                level=1,
                weekly_xp=0,
                monthly_xp=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["student_id"])
        )
        await session.execute(stmt)

    async def _lock_account(self, session: AsyncSession, student_id: int) -> XPAccount:
        """Select the account FOR UPDATE, creating it first if needed."""
        query = (
            select(XPAccount)
            .where(XPAccount.student_id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = (await session.execute(query)).scalar_one_or_none()
        if account is None:
            await self._ensure_account(session, student_id)
            account = (await session.execute(query)).scalar_one()
        return account

    async def earn(
        self,
        student_id: int,
        amount: int,
        source: str,
        description: str = "",
        *,
        idempotency_key: str | None = None,
        session_id: int | None = None,
        details: dict[str, Any] | None = None,
        session: AsyncSession | None = None,
    ) -> EarnResult:
        """Credit XP. A repeated idempotency key returns the account unchanged."""
        if amount <= 0:
            raise InvalidAmount(amount)

        async with self.store.use(session) as s:
            account = await self._lock_account(s, student_id)
            previous_level = account.level
            now = utcnow()

            txn = XPTransaction(
                student_id=student_id,
                type=EARNED,
                amount=amount,
                source=source,
                description=description,
                details=details,
                balance_before=account.available_xp,
                balance_after=account.available_xp + amount,
                session_id=session_id,
                idempotency_key=idempotency_key,
                created_at=now,
            )
            try:
                async with s.begin_nested():
                    s.add(txn)
            except IntegrityError:
                logger.debug("Duplicate XP idempotency key %s for student %d", idempotency_key, student_id)
                await s.refresh(account)
                return EarnResult(account=account, transaction=None, applied=False, previous_level=previous_level)

            before_total = account.total_xp
            account.total_xp += amount
            account.available_xp += amount
            account.weekly_xp += amount
            account.monthly_xp += amount
            account.level = level_for_xp(account.total_xp)
            account.last_xp_earned = now
            account.updated_at = now
            await s.flush()

            if account.level > previous_level:
                info = compute_level(account.total_xp)
                await emit_event(
                    s,
                    student_id,
                    LEVEL_UP,
                    f"Level {account.level} Achieved!",
                    f"You reached level {account.level}: {info['title']}",
                    xp_earned=amount,
                )

            step = self.settings.xp_milestone_step
            if step > 0 and account.total_xp // step > before_total // step:
                milestone = account.total_xp // step * step
                await emit_event(
                    s,
                    student_id,
                    XP_MILESTONE,
                    f"{milestone} XP Milestone!",
                    f"You have earned {milestone} XP in total",
                    xp_earned=amount,
                )

            return EarnResult(account=account, transaction=txn, applied=True, previous_level=previous_level)

    async def spend(
        self,
        student_id: int,
        amount: int,
        source: str = "reward_redemption",
        description: str = "",
        *,
        details: dict[str, Any] | None = None,
        session: AsyncSession | None = None,
    ) -> XPTransaction:
        """Debit available XP. Balance check and debit run under one row lock."""
        if amount <= 0:
            raise InvalidAmount(amount)

        async with self.store.use(session) as s:
            account = await self._lock_account(s, student_id)
            if account.available_xp < amount:
                raise InsufficientBalance(student_id, amount, account.available_xp)

            now = utcnow()
            txn = XPTransaction(
                student_id=student_id,
                type=SPENT,
                amount=-amount,
                source=source,
                description=description,
                details=details,
                balance_before=account.available_xp,
                balance_after=account.available_xp - amount,
                created_at=now,
            )
            s.add(txn)
            account.available_xp -= amount
            account.spent_xp += amount
            account.updated_at = now
            await s.flush()
            return txn

    async def get_balance(self, student_id: int, *, session: AsyncSession | None = None) -> XPAccount:
        """Current account, created on first read."""
        async with self.store.use(session) as s:
            query = select(XPAccount).where(XPAccount.student_id == student_id)
            account = (await s.execute(query)).scalar_one_or_none()
            if account is None:
                await self._ensure_account(s, student_id)
                account = (await s.execute(query)).scalar_one()
            return account

    async def get_transaction_history(
        self,
        student_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[XPTransaction], int]:
        """Newest-first page of a student's transactions and the total count."""
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        async with self.store.transaction() as s:
            total = (
                await s.execute(
                    select(func.count()).select_from(XPTransaction).where(XPTransaction.student_id == student_id)
                )
            ).scalar_one()
            result = await s.execute(
                select(XPTransaction)
                .where(XPTransaction.student_id == student_id)
                .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars()), total

    async def _recount(self, column: str, since: datetime, session: AsyncSession | None) -> int:
        """Set ``column`` to the XP earned since ``since`` for every account."""
        earned_since = (
            select(func.coalesce(func.sum(XPTransaction.amount), 0))
            .where(
                XPTransaction.student_id == XPAccount.student_id,
                XPTransaction.amount > 0,
                XPTransaction.created_at >= since,
            )
            .scalar_subquery()
        )
        async with self.store.use(session) as s:
            result = await s.execute(
                update(XPAccount)
                .values({column: earned_since, "updated_at": utcnow()})
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def reset_weekly_xp(self, week_start: datetime, *, session: AsyncSession | None = None) -> int:
        """Recount ``weekly_xp`` from the week starting at ``week_start``.

        XP earned after the boundary but before this runs is kept, so a late
        or repeated run gives the same counters.
        """
        count = await self._recount("weekly_xp", week_start, session)
        logger.info("Recounted weekly XP for %d accounts from %s", count, week_start.isoformat())
        return count

    async def reset_monthly_xp(self, month_start: datetime, *, session: AsyncSession | None = None) -> int:
        count = await self._recount("monthly_xp", month_start, session)
        logger.info("Recounted monthly XP for %d accounts from %s", count, month_start.isoformat())
        return count

    @staticmethod
    def level_progress(account: XPAccount) -> dict:
        info = compute_level(account.total_xp)
        info["total_xp"] = account.total_xp
        return info
