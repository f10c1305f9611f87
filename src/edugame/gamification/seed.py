"""Default student badge catalog.

Administrators own the catalog; this seed only provides the starter set a new
deployment ships with. Existing rows are refreshed by slug.
"""

from __future__ import annotations

import logging

from edugame.db.models import BadgeDefinition
from edugame.store import Store

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Getting started
    {
        "slug": "first_steps",
        "name": "First Steps",
        "description": "Solve your very first problem",
        "icon": "footprints",
        "category": "milestone",
        "tier": "bronze",
        "xp_reward": 25,
        "criteria": {"type": "first_activity"},
        "display_order": 1,
    },
    {
        "slug": "problems_50",
        "name": "Problem Crusher",
        "description": "Solve 50 problems",
        "icon": "hammer",
        "category": "milestone",
        "tier": "silver",
        "xp_reward": 100,
        "criteria": {"type": "count", "metric": "problems_solved", "threshold": 50},
        "display_order": 2,
    },
    {
        "slug": "problems_500",
        "name": "Problem Machine",
        "description": "Solve 500 problems",
        "icon": "cog",
        "category": "milestone",
        "tier": "gold",
        "xp_reward": 300,
        "criteria": {"type": "count", "metric": "problems_solved", "threshold": 500},
        "display_order": 3,
    },
    # Consistency
    {
        "slug": "streak_3",
        "name": "On a Roll",
        "description": "Practice three days in a row",
        "icon": "flame",
        "category": "streak",
        "tier": "bronze",
        "xp_reward": 30,
        "criteria": {"type": "streak", "days": 3},
        "display_order": 10,
    },
    {
        "slug": "streak_7",
        "name": "Week Warrior",
        "description": "Practice every day for a week",
        "icon": "calendar",
        "category": "streak",
        "tier": "silver",
        "xp_reward": 75,
        "criteria": {"type": "streak", "days": 7},
        "display_order": 11,
    },
    {
        "slug": "streak_30",
        "name": "Unstoppable",
        "description": "Practice every day for thirty days",
        "icon": "rocket",
        "category": "streak",
        "tier": "platinum",
        "xp_reward": 500,
        "criteria": {"type": "streak", "days": 30},
        "display_order": 12,
    },
    # Accuracy
    {
        "slug": "perfect_10",
        "name": "No Hints Needed",
        "description": "Solve 10 problems correctly without any hints",
        "icon": "target",
        "category": "accuracy",
        "tier": "silver",
        "xp_reward": 80,
        "criteria": {"type": "perfect_score", "count": 10},
        "display_order": 20,
    },
    {
        "slug": "topic_master",
        "name": "Topic Master",
        "description": "Reach 90% accuracy over at least 20 attempts in any topic",
        "icon": "star",
        "category": "mastery",
        "tier": "gold",
        "xp_reward": 150,
        "criteria": {"type": "topic_mastery", "min_accuracy": 90, "min_attempts": 20},
        "display_order": 30,
    },
    {
        "slug": "polymath",
        "name": "Polymath",
        "description": "Master three different topics",
        "icon": "books",
        "category": "mastery",
        "tier": "platinum",
        "xp_reward": 400,
        "criteria": {"type": "topic_mastery", "min_accuracy": 85, "min_attempts": 20, "topics": 3},
        "display_order": 31,
    },
    # Progression
    {
        "slug": "level_5",
        "name": "Rising Scholar",
        "description": "Reach level 5",
        "icon": "arrow-up",
        "category": "level",
        "tier": "silver",
        "xp_reward": 0,
        "criteria": {"type": "level", "level": 5},
        "display_order": 40,
    },
    {
        "slug": "study_600",
        "name": "Ten Hours In",
        "description": "Spend ten hours studying",
        "icon": "clock",
        "category": "time",
        "tier": "gold",
        "xp_reward": 120,
        "criteria": {"type": "count", "metric": "total_minutes", "threshold": 600},
        "display_order": 50,
    },
    {
        "slug": "challenger",
        "name": "Challenger",
        "description": "Complete five challenges",
        "icon": "trophy",
        "category": "challenge",
        "tier": "gold",
        "xp_reward": 150,
        "criteria": {"type": "count", "metric": "challenges_completed", "threshold": 5},
        "display_order": 60,
    },
    {
        "slug": "night_owl",
        "name": "Night Owl",
        "description": "A secret badge for the truly dedicated",
        "icon": "owl",
        "category": "secret",
        "tier": "gold",
        "xp_reward": 100,
        "criteria": {"type": "count", "metric": "total_attempts", "threshold": 1000},
        "is_secret": True,
        "display_order": 90,
    },
]

_REFRESHED_COLUMNS = (
    "name",
    "description",
    "icon",
    "category",
    "tier",
    "xp_reward",
    "criteria",
    "is_secret",
    "display_order",
)


async def seed_badges(store: Store) -> int:
    """Upsert the starter badge catalog. Returns number of badges seeded."""
    seeded = 0
    async with store.transaction() as s:
        for badge_data in BADGE_SEED_DATA:
            values = {"is_secret": False, "target_role": "student", "is_active": True, **badge_data}
            stmt = store.insert(BadgeDefinition).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["slug"],
                set_={col: stmt.excluded[col] for col in _REFRESHED_COLUMNS},
            )
            await s.execute(stmt)
            seeded += 1
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
