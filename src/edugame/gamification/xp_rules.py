"""Server-side XP rules. Clients never supply XP amounts."""

from __future__ import annotations

PROBLEM_COMPLETION_BASE = 10
NO_HINTS_BONUS = 5
STREAK_MULTIPLIER = 1.2
STREAK_MIN_DAYS = 2

DIFFICULTY_MULTIPLIERS: dict[str, float] = {
    "easy": 1.0,
    "medium": 1.5,
    "hard": 2.0,
}


def problem_xp(difficulty: str, hints_used: int, streak_days: int = 0) -> int:
    """XP for one correct problem.

    >>> problem_xp("hard", 0)
    25
    >>> problem_xp("medium", 2, streak_days=3)
    18
    """
    xp = PROBLEM_COMPLETION_BASE * DIFFICULTY_MULTIPLIERS.get(difficulty, 1.0)
    if hints_used == 0:
        xp += NO_HINTS_BONUS
    if streak_days >= STREAK_MIN_DAYS:
        xp *= STREAK_MULTIPLIER
    # Half-up rounding; Python's round() would send 22.5 to 22.
    return int(xp + 0.5)
