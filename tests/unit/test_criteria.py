"""Badge criteria parsing and evaluation against student stats."""

from __future__ import annotations

import pytest

from edugame.gamification.criteria import (
    CountThreshold,
    CriteriaError,
    FirstActivity,
    LevelReached,
    PerfectScoreCount,
    Streak,
    TopicMastery,
    parse_criteria,
)
from edugame.gamification.seed import BADGE_SEED_DATA
from edugame.gamification.stats import StudentStats, TopicStats


class TestParseCriteria:
    def test_all_seed_criteria_parse(self):
        for badge in BADGE_SEED_DATA:
            parse_criteria(badge["criteria"])

    def test_builds_typed_criterion(self):
        assert parse_criteria({"type": "streak", "days": 7}) == Streak(days=7)
        assert parse_criteria({"type": "count", "metric": "problems_solved", "threshold": 5}) == CountThreshold(
            metric="problems_solved", threshold=5
        )

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"days": 3},
            {"type": "unknown"},
            {"type": "streak"},
            {"type": "streak", "days": 3, "extra": 1},
            {"type": "count", "metric": "hashrate", "threshold": 1},
            ["streak"],
        ],
    )
    def test_rejects_malformed(self, data):
        with pytest.raises(CriteriaError):
            parse_criteria(data)


class TestCriteriaEvaluation:
    def test_first_activity(self):
        assert not FirstActivity().is_satisfied(StudentStats())
        assert FirstActivity().is_satisfied(StudentStats(problems_solved=1))

    def test_streak_uses_longest(self):
        stats = StudentStats(current_streak=1, longest_streak=8)
        assert Streak(days=7).is_satisfied(stats)
        assert Streak(days=30).progress(stats) == pytest.approx(26.67)

    def test_count_progress(self):
        criterion = CountThreshold(metric="problems_solved", threshold=50)
        stats = StudentStats(problems_solved=20)
        assert not criterion.is_satisfied(stats)
        assert criterion.progress(stats) == 40.0

    def test_progress_caps_at_100(self):
        assert CountThreshold(metric="total_minutes", threshold=10).progress(StudentStats(total_minutes=60)) == 100.0

    def test_topic_mastery_needs_attempts_and_accuracy(self):
        stats = StudentStats(
            topics={
                "fractions": TopicStats(attempts=20, correct=19),
                "decimals": TopicStats(attempts=5, correct=5),
                "geometry": TopicStats(attempts=30, correct=15),
            }
        )
        assert TopicMastery(min_accuracy=90, min_attempts=20).is_satisfied(stats)
        assert not TopicMastery(min_accuracy=90, min_attempts=20, topics=2).is_satisfied(stats)
        assert TopicMastery(min_accuracy=90, min_attempts=20, topics=2).progress(stats) == 50.0
        assert not TopicMastery(min_accuracy=90, min_attempts=20, topic="decimals").is_satisfied(stats)

    def test_level_and_perfect(self):
        assert LevelReached(level=5).is_satisfied(StudentStats(level=6))
        assert LevelReached(level=5).progress(StudentStats(level=2)) == 40.0
        assert PerfectScoreCount(count=10).is_satisfied(StudentStats(perfect_problems=10))


class TestStudentStats:
    def test_accuracy(self):
        assert StudentStats().accuracy == 0.0
        assert StudentStats(total_attempts=4, problems_solved=3).accuracy == 75.0

    def test_metric_lookup(self):
        assert StudentStats(total_minutes=90).metric("total_minutes") == 90
        with pytest.raises(KeyError):
            StudentStats().metric("current_streak_days")
