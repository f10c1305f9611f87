"""Gamification error taxonomy.

Caller errors (``InvalidAmount``, ``InsufficientBalance``, ``InvalidChallenge``)
and lookups that miss (``NotFound``) propagate to the API layer.
``TransientStoreFailure`` wraps lock timeouts, deadlocks and lost connections
and is eligible for a single retry by the calling component.

Already-awarded rewards and non-joinable challenges are expected race
outcomes; they are returned as typed results (see the engines), not raised.
"""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for gamification errors."""


class InvalidAmount(GamificationError):
    """XP delta was zero or negative."""

    def __init__(self, amount: int) -> None:
        super().__init__(f"XP amount must be positive, got {amount}")
        self.amount = amount


class InsufficientBalance(GamificationError):
    """Spend exceeds the available XP balance."""

    def __init__(self, student_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Student {student_id} has {available} XP available, cannot spend {requested}"
        )
        self.student_id = student_id
        self.requested = requested
        self.available = available


class NotFound(GamificationError):
    """Unknown student, challenge, badge or leaderboard id."""

    def __init__(self, kind: str, ident: object) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class InvalidChallenge(GamificationError):
    """Challenge definition failed validation."""


class TransientStoreFailure(GamificationError):
    """Lock timeout, deadlock or connection loss. Safe to retry."""


class InvalidLeaderboard(GamificationError):
    """Unknown leaderboard type or malformed scope."""
