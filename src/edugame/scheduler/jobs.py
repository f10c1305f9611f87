"""Periodic gamification jobs.

Each job names the period it belongs to; the scheduler runs a job at most
once per period across all instances.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from edugame.leaderboards.periods import (
    MONTHLY,
    WEEKLY,
    get_month_boundaries,
    get_month_key,
    get_week_boundaries,
    get_week_iso,
)
from edugame.service import Gamification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    name: str
    period_key: Callable[[datetime], str]
    run: Callable[[Gamification, datetime], Awaitable[dict]]


def _day_key(now: datetime) -> str:
    return now.date().isoformat()


async def weekly_challenge_generation(game: Gamification, now: datetime) -> dict:
    created = await game.challenges.generate_weekly_challenges(now)
    return {"challenges_created": len(created)}


async def weekly_leaderboard_reset(game: Gamification, now: datetime) -> dict:
    week_start, _ = get_week_boundaries(now)
    reset = await game.ledger.reset_weekly_xp(week_start)
    rotated = await game.leaderboards.rotate(WEEKLY, now)
    bootstrapped = await game.leaderboards.ensure_boards(now, period_type=WEEKLY)
    archived = await game.leaderboards.archive(week_start)
    return {
        "accounts_recounted": reset,
        "rotated": len(rotated),
        "created": len(bootstrapped),
        "archived": archived,
    }


async def daily_leaderboard_refresh(game: Gamification, now: datetime) -> dict:
    refreshed = await game.leaderboards.refresh_current()
    return {"refreshed": refreshed}


async def monthly_leaderboard_creation(game: Gamification, now: datetime) -> dict:
    month_start, _ = get_month_boundaries(now)
    reset = await game.ledger.reset_monthly_xp(month_start)
    rotated = await game.leaderboards.rotate(MONTHLY, now)
    bootstrapped = await game.leaderboards.ensure_boards(now, period_type=MONTHLY)
    archived = await game.leaderboards.archive(month_start)
    return {
        "accounts_recounted": reset,
        "rotated": len(rotated),
        "created": len(bootstrapped),
        "archived": archived,
    }


# Resets and rotations come before the daily refresh so a new period is
# ranked from its fresh boards.
DEFAULT_JOBS: list[Job] = [
    Job("weekly_challenge_generation", get_week_iso, weekly_challenge_generation),
    Job("weekly_leaderboard_reset", get_week_iso, weekly_leaderboard_reset),
    Job("monthly_leaderboard_creation", get_month_key, monthly_leaderboard_creation),
    Job("daily_leaderboard_refresh", _day_key, daily_leaderboard_refresh),
]
