"""Server-side XP amounts for problem completions."""

from __future__ import annotations

import pytest

from edugame.gamification.xp_rules import problem_xp


class TestProblemXP:
    @pytest.mark.parametrize(
        ("difficulty", "hints", "streak", "expected"),
        [
            ("easy", 1, 0, 10),
            ("easy", 0, 0, 15),
            ("medium", 1, 0, 15),
            ("medium", 0, 0, 20),
            ("hard", 3, 0, 20),
            ("hard", 0, 0, 25),
        ],
    )
    def test_base_and_no_hint_bonus(self, difficulty, hints, streak, expected):
        assert problem_xp(difficulty, hints, streak) == expected

    def test_streak_multiplier_needs_two_days(self):
        assert problem_xp("easy", 0, streak_days=1) == 15
        assert problem_xp("easy", 0, streak_days=2) == 18

    def test_streak_with_hints(self):
        assert problem_xp("medium", 2, streak_days=3) == 18
        assert problem_xp("medium", 0, streak_days=10) == 24

    def test_unknown_difficulty_uses_base(self):
        assert problem_xp("legendary", 1) == 10
