"""Leaderboard scope validation and strategy registry."""

from __future__ import annotations

import pytest

from edugame.config import Settings
from edugame.errors import InvalidLeaderboard
from edugame.leaderboards.periods import MONTHLY, WEEKLY
from edugame.leaderboards.scopes import grade_scope_id, population_query, validate_scope
from edugame.leaderboards.strategies import STRATEGIES, get_strategy


class TestScopes:
    def test_valid_scopes(self):
        validate_scope("class", "7")
        validate_scope("school", "3")
        validate_scope("grade", "3:5")

    @pytest.mark.parametrize(
        ("scope", "scope_id"),
        [("class", "abc"), ("school", ""), ("grade", "5"), ("grade", "3:"), ("district", "1")],
    )
    def test_invalid_scopes(self, scope, scope_id):
        with pytest.raises(InvalidLeaderboard):
            validate_scope(scope, scope_id)

    def test_grade_scope_id(self):
        assert grade_scope_id(3, "5") == "3:5"

    def test_population_query_unknown_scope(self):
        with pytest.raises(InvalidLeaderboard):
            population_query("planet", "1")


class TestStrategies:
    def test_registry(self):
        assert set(STRATEGIES) == {
            "weekly_xp",
            "monthly_accuracy",
            "challenge_completion",
            "streak_leaders",
            "badge_count",
        }
        assert STRATEGIES["weekly_xp"].period_type == WEEKLY
        assert STRATEGIES["monthly_accuracy"].period_type == MONTHLY

    def test_unknown_type(self):
        with pytest.raises(InvalidLeaderboard):
            get_strategy("hashrate", Settings())
