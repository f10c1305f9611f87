"""In-process job scheduler.

Every server instance runs one ``Scheduler`` task. On each tick it tries to
claim every job for the current period; a claim held elsewhere is a skip.
Failures are retried with a fixed backoff up to ``job_retry_attempts`` times
within a tick. A period left failed is claimed again on the next tick.
Nothing escapes the loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog

from edugame.config import Settings
from edugame.db.types import utcnow
from edugame.scheduler.jobs import DEFAULT_JOBS, Job
from edugame.scheduler.locks import JobLock
from edugame.service import Gamification

logger = structlog.get_logger()

COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"


class Scheduler:
    def __init__(
        self,
        game: Gamification,
        jobs: list[Job] | None = None,
        settings: Settings | None = None,
        lock: JobLock | None = None,
    ) -> None:
        self.game = game
        self.settings = settings or game.settings
        self.jobs = DEFAULT_JOBS if jobs is None else jobs
        self.lock = lock or JobLock(game.store, self.settings)
        self._stop = asyncio.Event()

    async def run_job(self, job: Job, now: datetime | None = None) -> str:
        """Claim and run one job for the period containing ``now``."""
        now = now or utcnow()
        period_key = job.period_key(now)
        tries = 0

        while True:
            claim = await self.lock.acquire(job.name, period_key, now)
            if claim is None:
                logger.debug("job_skipped", job=job.name, period=period_key)
                return SKIPPED

            tries += 1
            try:
                summary = await job.run(self.game, now)
            except Exception as exc:
                logger.error(
                    "job_failed",
                    job=job.name,
                    period=period_key,
                    attempt=claim.attempts,
                    error=str(exc),
                    exc_info=exc,
                )
                await self.lock.fail(claim, f"{type(exc).__name__}: {exc}")
                if tries >= self.settings.job_retry_attempts:
                    return FAILED
                await asyncio.sleep(self.settings.job_retry_backoff_seconds)
                continue

            await self.lock.complete(claim)
            logger.info("job_completed", job=job.name, period=period_key, attempt=claim.attempts, **summary)
            return COMPLETED

    async def tick(self, now: datetime | None = None) -> dict[str, str]:
        now = now or utcnow()
        results: dict[str, str] = {}
        for job in self.jobs:
            try:
                results[job.name] = await self.run_job(job, now)
            except Exception as exc:
                # Claim bookkeeping itself failed (store unavailable); try again next tick.
                logger.error("job_tick_error", job=job.name, error=str(exc), exc_info=exc)
                results[job.name] = FAILED
        return results

    async def run_forever(self) -> None:
        logger.info("scheduler_started", instance=self.settings.instance_id, jobs=[j.name for j in self.jobs])
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.settings.scheduler_tick_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduler_stopped", instance=self.settings.instance_id)

    def stop(self) -> None:
        self._stop.set()
