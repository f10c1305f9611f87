"""Declarative badge criteria.

A badge definition stores its criteria as JSON with a ``type`` tag, e.g.::

    {"type": "streak", "days": 7}
    {"type": "count", "metric": "problems_solved", "threshold": 100}
    {"type": "topic_mastery", "min_accuracy": 90, "min_attempts": 10, "topics": 3}

Each criterion is a predicate over ``StudentStats`` aggregates loaded from the
store. Nothing the client sends is trusted as a criterion input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from edugame.gamification.stats import COUNT_METRICS, StudentStats


class CriteriaError(ValueError):
    """Criteria JSON could not be parsed."""


def _pct(value: float, target: float) -> float:
    if target <= 0:
        return 100.0
    return round(min(100.0, max(0.0, value / target * 100)), 2)


class Criterion:
    kind: ClassVar[str]

    def is_satisfied(self, stats: StudentStats) -> bool:
        raise NotImplementedError

    def progress(self, stats: StudentStats) -> float:
        raise NotImplementedError


@dataclass(frozen=True)
class FirstActivity(Criterion):
    kind: ClassVar[str] = "first_activity"

    def is_satisfied(self, stats: StudentStats) -> bool:
        return stats.problems_solved >= 1

    def progress(self, stats: StudentStats) -> float:
        return 100.0 if stats.problems_solved else 0.0


@dataclass(frozen=True)
class Streak(Criterion):
    kind: ClassVar[str] = "streak"
    days: int

    def is_satisfied(self, stats: StudentStats) -> bool:
        return max(stats.current_streak, stats.longest_streak) >= self.days

    def progress(self, stats: StudentStats) -> float:
        return _pct(max(stats.current_streak, stats.longest_streak), self.days)


@dataclass(frozen=True)
class CountThreshold(Criterion):
    kind: ClassVar[str] = "count"
    metric: str
    threshold: int

    def is_satisfied(self, stats: StudentStats) -> bool:
        return stats.metric(self.metric) >= self.threshold

    def progress(self, stats: StudentStats) -> float:
        return _pct(stats.metric(self.metric), self.threshold)


@dataclass(frozen=True)
class TopicMastery(Criterion):
    kind: ClassVar[str] = "topic_mastery"
    min_accuracy: float
    min_attempts: int
    topics: int = 1
    topic: str | None = None

    def _mastered(self, stats: StudentStats) -> int:
        if self.topic is not None:
            candidates = [stats.topics[self.topic]] if self.topic in stats.topics else []
        else:
            candidates = list(stats.topics.values())
        return sum(
            1 for t in candidates
            if t.attempts >= self.min_attempts and t.accuracy >= self.min_accuracy
        )

    def is_satisfied(self, stats: StudentStats) -> bool:
        return self._mastered(stats) >= self.topics

    def progress(self, stats: StudentStats) -> float:
        return _pct(self._mastered(stats), self.topics)


@dataclass(frozen=True)
class LevelReached(Criterion):
    kind: ClassVar[str] = "level"
    level: int

    def is_satisfied(self, stats: StudentStats) -> bool:
        return stats.level >= self.level

    def progress(self, stats: StudentStats) -> float:
        return _pct(stats.level, self.level)


@dataclass(frozen=True)
class PerfectScoreCount(Criterion):
    kind: ClassVar[str] = "perfect_score"
    count: int

    def is_satisfied(self, stats: StudentStats) -> bool:
        return stats.perfect_problems >= self.count

    def progress(self, stats: StudentStats) -> float:
        return _pct(stats.perfect_problems, self.count)


CRITERIA_TYPES: dict[str, type[Criterion]] = {
    cls.kind: cls
    for cls in (FirstActivity, Streak, CountThreshold, TopicMastery, LevelReached, PerfectScoreCount)
}


def parse_criteria(data: dict[str, Any]) -> Criterion:
    """Build a criterion from its JSON form."""
    if not isinstance(data, dict) or "type" not in data:
        raise CriteriaError(f"criteria must be an object with a 'type': {data!r}")
    kind = data["type"]
    cls = CRITERIA_TYPES.get(kind)
    if cls is None:
        raise CriteriaError(f"unknown criteria type: {kind}")
    params = {k: v for k, v in data.items() if k != "type"}
    try:
        criterion = cls(**params)
    except TypeError as exc:
        raise CriteriaError(f"bad parameters for {kind}: {exc}") from exc
    if isinstance(criterion, CountThreshold) and criterion.metric not in COUNT_METRICS:
        raise CriteriaError(f"unknown count metric: {criterion.metric}")
    return criterion
