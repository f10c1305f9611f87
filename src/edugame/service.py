"""Wiring of the gamification components around one store."""

from __future__ import annotations

from dataclasses import dataclass

from edugame.config import Settings, get_settings
from edugame.gamification.activity import ActivityIntake
from edugame.gamification.badges import BadgeEngine
from edugame.gamification.challenges import ChallengeEngine
from edugame.gamification.ledger import XPLedger
from edugame.leaderboards.engine import LeaderboardEngine
from edugame.store import Store


@dataclass
class Gamification:
    store: Store
    settings: Settings
    ledger: XPLedger
    badges: BadgeEngine
    challenges: ChallengeEngine
    leaderboards: LeaderboardEngine
    activity: ActivityIntake

    @classmethod
    def build(cls, store: Store, settings: Settings | None = None) -> Gamification:
        settings = settings or get_settings()
        ledger = XPLedger(store, settings)
        badges = BadgeEngine(store, ledger)
        challenges = ChallengeEngine(store, ledger, badges, settings)
        return cls(
            store=store,
            settings=settings,
            ledger=ledger,
            badges=badges,
            challenges=challenges,
            leaderboards=LeaderboardEngine(store, settings),
            activity=ActivityIntake(store, ledger, badges, challenges),
        )
