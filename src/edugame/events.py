"""Notification-worthy gamification events.

Events are written to ``gamification_events`` in the same transaction as the
mutation that caused them, so a rolled-back award never leaves a dangling
notification. Once the transaction commits, the store hands the queued
payloads to the configured sink (Redis pub/sub when enabled).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.db.models import GamificationEvent
from edugame.db.types import utcnow
from edugame.store import Store, queue_event

logger = logging.getLogger(__name__)

CHANNEL = "pubsub:gamification"

BADGE_EARNED = "badge_earned"
LEVEL_UP = "level_up"
XP_MILESTONE = "xp_milestone"
CHALLENGE_COMPLETED = "challenge_completed"
LEADERBOARD_TOP = "leaderboard_top"


async def emit_event(
    session: AsyncSession,
    student_id: int,
    kind: str,
    title: str,
    description: str = "",
    *,
    xp_earned: int | None = None,
    badge_id: int | None = None,
    challenge_id: int | None = None,
    leaderboard_id: int | None = None,
) -> GamificationEvent:
    """Record an event row and queue it for post-commit fan-out."""
    row = GamificationEvent(
        student_id=student_id,
        kind=kind,
        title=title,
        description=description,
        xp_earned=xp_earned,
        badge_id=badge_id,
        challenge_id=challenge_id,
        leaderboard_id=leaderboard_id,
        created_at=utcnow(),
    )
    session.add(row)
    await session.flush()
    queue_event(session, event_to_dict(row))
    return row


def event_to_dict(row: GamificationEvent) -> dict[str, Any]:
    return {
        "id": row.id,
        "student_id": row.student_id,
        "kind": row.kind,
        "title": row.title,
        "description": row.description,
        "xp_earned": row.xp_earned,
        "badge_id": row.badge_id,
        "challenge_id": row.challenge_id,
        "leaderboard_id": row.leaderboard_id,
        "created_at": row.created_at.isoformat(),
    }


async def list_events(
    store: Store,
    student_id: int,
    after_id: int | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Return a student's events in id order, optionally after a cursor."""
    limit = max(1, min(limit, 100))
    async with store.transaction() as session:
        query = select(GamificationEvent).where(GamificationEvent.student_id == student_id)
        if after_id is not None:
            query = query.where(GamificationEvent.id > after_id)
        result = await session.execute(query.order_by(GamificationEvent.id.asc()).limit(limit))
        return [event_to_dict(row) for row in result.scalars()]


class RedisEventSink:
    """Publishes committed events to a Redis channel."""

    def __init__(self, redis: object, channel: str = CHANNEL) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, events: list[dict[str, Any]]) -> None:
        for payload in events:
            try:
                await self.redis.publish(self.channel, json.dumps(payload))  # type: ignore[attr-defined]
            except Exception:
                logger.warning("Failed to publish %s event", payload.get("kind"), exc_info=True)


class CollectingEventSink:
    """Keeps published events in memory. Used by tests and local runs without Redis."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def publish(self, events: list[dict[str, Any]]) -> None:
        self.events.extend(events)

    def kinds(self) -> list[str]:
        return [e["kind"] for e in self.events]
