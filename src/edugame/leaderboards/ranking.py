"""Deterministic leaderboard ranking and trend calculation.

Students are ordered by score DESC, then by the strategy's tiebreak tuple
ASC, then by student id. Ranks are positions 1..K with no gaps or repeats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

UP = "up"
DOWN = "down"
SAME = "same"
NEW = "new"


@dataclass
class ScoredStudent:
    student_id: int
    score: float
    tiebreak: tuple[Any, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RankedEntry:
    student_id: int
    rank: int
    score: float
    previous_rank: int | None
    trend_direction: str
    details: dict[str, Any] = field(default_factory=dict)


def trend_direction(previous_rank: int | None, rank: int) -> str:
    """Sign of ``previous_rank - rank``; ``new`` when there was no prior entry.

    Rank 1 is best, so moving from 4 to 2 is ``up``.
    """
    if previous_rank is None:
        return NEW
    change = previous_rank - rank
    if change > 0:
        return UP
    if change < 0:
        return DOWN
    return SAME


def rank_students(
    scored: list[ScoredStudent],
    previous_ranks: dict[int, int] | None = None,
) -> list[RankedEntry]:
    previous_ranks = previous_ranks or {}

    def sort_key(s: ScoredStudent) -> tuple[float, tuple[Any, ...], int]:
        return (-s.score, s.tiebreak, s.student_id)

    ranked: list[RankedEntry] = []
    for idx, s in enumerate(sorted(scored, key=sort_key)):
        rank = idx + 1
        previous = previous_ranks.get(s.student_id)
        ranked.append(
            RankedEntry(
                student_id=s.student_id,
                rank=rank,
                score=s.score,
                previous_rank=previous,
                trend_direction=trend_direction(previous, rank),
                details=s.details,
            )
        )
    return ranked
