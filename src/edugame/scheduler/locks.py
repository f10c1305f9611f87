"""Cluster-wide job claims.

A job run for a period is claimed by inserting its ``job_runs`` row. The
claim transaction also takes a Postgres advisory lock keyed by job and
period, so competing instances never both get past the claim.
A claim can be taken over when its last run failed, or when it has sat in
``running`` longer than the lease (its owner died). ``attempts`` counts every
run of the (job, period) across ticks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, update

from edugame.config import Settings, get_settings
from edugame.db.models import JobRun
from edugame.db.types import utcnow
from edugame.store import Store

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class Claim:
    run_id: int
    job_name: str
    period_key: str
    attempts: int


class JobLock:
    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def acquire(self, job_name: str, period_key: str, now: datetime | None = None) -> Claim | None:
        """Claim (job, period) for this instance. None means another instance has it."""
        now = now or utcnow()
        async with self.store.transaction() as s:
            if not await self.store.try_advisory_lock(s, f"job:{job_name}:{period_key}"):
                return None

            inserted = await s.execute(
                self.store.insert(JobRun)
                .values(
                    job_name=job_name,
                    period_key=period_key,
                    status=RUNNING,
                    attempts=1,
                    instance_id=self.settings.instance_id,
                    started_at=now,
                )
                .on_conflict_do_nothing(index_elements=["job_name", "period_key"])
                .returning(JobRun.id)
            )
            run_id = inserted.scalar_one_or_none()
            if run_id is not None:
                return Claim(run_id, job_name, period_key, 1)

            lease_expired = now - timedelta(seconds=self.settings.job_lease_seconds)
            reclaimed = await s.execute(
                update(JobRun)
                .where(
                    JobRun.job_name == job_name,
                    JobRun.period_key == period_key,
                    or_(
                        JobRun.status == FAILED,
                        (JobRun.status == RUNNING) & (JobRun.started_at < lease_expired),
                    ),
                )
                .values(
                    status=RUNNING,
                    attempts=JobRun.attempts + 1,
                    instance_id=self.settings.instance_id,
                    started_at=now,
                    finished_at=None,
                )
                .returning(JobRun.id, JobRun.attempts)
                .execution_options(synchronize_session=False)
            )
            row = reclaimed.one_or_none()
            if row is None:
                return None
            return Claim(row.id, job_name, period_key, row.attempts)

    async def complete(self, claim: Claim) -> None:
        async with self.store.transaction() as s:
            await s.execute(
                update(JobRun)
                .where(JobRun.id == claim.run_id)
                .values(status=COMPLETED, finished_at=utcnow(), last_error=None)
                .execution_options(synchronize_session=False)
            )

    async def fail(self, claim: Claim, error: str) -> None:
        async with self.store.transaction() as s:
            await s.execute(
                update(JobRun)
                .where(JobRun.id == claim.run_id)
                .values(status=FAILED, finished_at=utcnow(), last_error=error[:2000])
                .execution_options(synchronize_session=False)
            )
