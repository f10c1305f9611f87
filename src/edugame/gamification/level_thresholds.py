"""Level thresholds and computation.

These values must match the student dashboard's level bar.
"""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Newcomer", "cumulative": 0},
    {"level": 2, "title": "Explorer", "cumulative": 100},
    {"level": 3, "title": "Problem Solver", "cumulative": 250},
    {"level": 4, "title": "Apprentice", "cumulative": 500},
    {"level": 5, "title": "Scholar", "cumulative": 1000},
    {"level": 6, "title": "Achiever", "cumulative": 2000},
    {"level": 7, "title": "Expert", "cumulative": 4000},
    {"level": 8, "title": "Master", "cumulative": 8000},
    {"level": 9, "title": "Grandmaster", "cumulative": 15000},
    {"level": 10, "title": "Legend", "cumulative": 30000},
]

MAX_LEVEL = LEVEL_THRESHOLDS[-1]["level"]


def level_for_xp(total_xp: int) -> int:
    """Highest level whose threshold is <= total_xp."""
    level = 1
    for entry in LEVEL_THRESHOLDS:
        if total_xp >= entry["cumulative"]:
            level = entry["level"]
    return level


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    index = level_for_xp(total_xp) - 1
    current = LEVEL_THRESHOLDS[index]
    is_max = index == len(LEVEL_THRESHOLDS) - 1
    next_level = current if is_max else LEVEL_THRESHOLDS[index + 1]

    xp_into_level = total_xp - current["cumulative"]
    xp_for_level = next_level["cumulative"] - current["cumulative"]

    if is_max:
        progress_percent = 100.0
        xp_to_next = 0
    else:
        progress_percent = round(min(100.0, xp_into_level / xp_for_level * 100), 2)
        xp_to_next = max(0, next_level["cumulative"] - total_xp)

    return {
        "level": current["level"],
        "title": current["title"],
        "current_level_xp": current["cumulative"],
        "next_level_xp": next_level["cumulative"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "xp_to_next_level": xp_to_next,
        "progress_percent": progress_percent,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
        "is_max_level": is_max,
    }
