"""Challenge engine: joins, monotonic progress and exactly-once completion rewards."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import CLASS_ID, SCHOOL_ID, window
from edugame.db.models import (
    BadgeDefinition,
    ChallengeParticipation,
    ProblemAttempt,
    StudentBadge,
    XPTransaction,
)
from edugame.errors import InvalidChallenge, NotFound
from edugame.events import CHALLENGE_COMPLETED
from edugame.gamification.challenges import ChallengeFilters, NotJoinableReason, WEEKLY_TEMPLATES

pytestmark = pytest.mark.asyncio


async def _badge_id(store, slug: str) -> int:
    async with store.transaction() as s:
        return (await s.execute(select(BadgeDefinition.id).where(BadgeDefinition.slug == slug))).scalar_one()


async def _challenge(game, **overrides):
    start, end = window()
    params = {
        "title": "Solve five",
        "type": "weekly",
        "metric": "problems_solved",
        "target_value": 5,
        "start_date": start,
        "end_date": end,
        "xp_reward": 50,
    }
    params.update(overrides)
    return await game.challenges.create_challenge(**params)


async def _participation(store, challenge_id: int, student_id: int) -> ChallengeParticipation:
    async with store.transaction() as s:
        return (
            await s.execute(
                select(ChallengeParticipation).where(
                    ChallengeParticipation.challenge_id == challenge_id,
                    ChallengeParticipation.student_id == student_id,
                )
            )
        ).scalar_one()


async def _reward_counts(store, student_id: int, challenge_id: int, badge_id: int | None = None) -> tuple[int, int]:
    async with store.transaction() as s:
        xp_rows = (
            await s.execute(
                select(func.count(XPTransaction.id)).where(
                    XPTransaction.student_id == student_id,
                    XPTransaction.idempotency_key == f"challenge:{challenge_id}:{student_id}:xp",
                )
            )
        ).scalar_one()
        badge_rows = 0
        if badge_id is not None:
            badge_rows = (
                await s.execute(
                    select(func.count(StudentBadge.id)).where(
                        StudentBadge.student_id == student_id,
                        StudentBadge.badge_id == badge_id,
                        StudentBadge.is_earned.is_(True),
                    )
                )
            ).scalar_one()
    return xp_rows, badge_rows


class TestCreate:
    async def test_create_and_get(self, game):
        challenge = await _challenge(game)
        fetched = await game.challenges.get_challenge(challenge.id)
        assert fetched.title == "Solve five"
        assert fetched.current_participants == 0
        assert fetched.is_active

    @pytest.mark.parametrize(
        "overrides",
        [
            {"type": "yearly"},
            {"metric": "hashrate"},
            {"target_value": 0},
            {"xp_reward": -1},
            {"max_participants": 0},
            {"badge_reward": 9999},
        ],
    )
    async def test_invalid(self, game, overrides):
        with pytest.raises(InvalidChallenge):
            await _challenge(game, **overrides)

    async def test_end_before_start(self, game):
        start, end = window()
        with pytest.raises(InvalidChallenge):
            await _challenge(game, start_date=end, end_date=start)

    async def test_get_missing(self, game):
        with pytest.raises(NotFound):
            await game.challenges.get_challenge(9999)


class TestListing:
    async def test_active_filter(self, game):
        active = await _challenge(game, title="Now")
        past_start = datetime.now(timezone.utc) - timedelta(days=20)
        await _challenge(game, title="Past", start_date=past_start, end_date=past_start + timedelta(days=7))

        titles = [c.title for c in await game.challenges.get_challenges()]
        assert titles == [active.title]
        everything = await game.challenges.get_challenges(ChallengeFilters(active_only=False))
        assert {c.title for c in everything} == {"Now", "Past"}

    async def test_scope_filters_include_unscoped(self, game):
        await _challenge(game, title="Everyone")
        await _challenge(game, title="Math only", subject="math")
        await _challenge(game, title="Science only", subject="science")
        titles = {c.title for c in await game.challenges.get_challenges(ChallengeFilters(subject="math"))}
        assert titles == {"Everyone", "Math only"}

    async def test_several_types(self, game):
        await _challenge(game, title="Today", type="daily")
        await _challenge(game, title="This week", type="weekly")
        await _challenge(game, title="Field day", type="special")
        found = await game.challenges.get_challenges(ChallengeFilters(types=["daily", "special"]))
        assert {c.title for c in found} == {"Today", "Field day"}

    async def test_weekly_generation_is_idempotent(self, game):
        monday = datetime(2026, 10, 19, 9, tzinfo=timezone.utc)
        created = await game.challenges.generate_weekly_challenges(monday)
        again = await game.challenges.generate_weekly_challenges(monday + timedelta(days=3))
        assert len(created) == len(WEEKLY_TEMPLATES)
        assert again == []
        assert all(c.start_date == datetime(2026, 10, 19, tzinfo=timezone.utc) for c in created)
        assert all(c.end_date == datetime(2026, 10, 26, tzinfo=timezone.utc) for c in created)


class TestJoin:
    async def test_join(self, game):
        challenge = await _challenge(game)
        result = await game.challenges.join(challenge.id, 1)
        assert result.joined
        assert result.participation.current_value == 0
        assert (await game.challenges.get_challenge(challenge.id)).current_participants == 1

    async def test_already_joined(self, game):
        challenge = await _challenge(game)
        await game.challenges.join(challenge.id, 1)
        result = await game.challenges.join(challenge.id, 1)
        assert not result
        assert result.reason is NotJoinableReason.ALREADY_JOINED
        assert (await game.challenges.get_challenge(challenge.id)).current_participants == 1

    async def test_outside_window(self, game):
        start = datetime.now(timezone.utc) + timedelta(days=2)
        challenge = await _challenge(game, start_date=start, end_date=start + timedelta(days=7))
        result = await game.challenges.join(challenge.id, 1)
        assert result.reason is NotJoinableReason.OUTSIDE_WINDOW

    async def test_end_is_exclusive(self, game):
        challenge = await _challenge(game)
        result = await game.challenges.join(challenge.id, 1, now=challenge.end_date)
        assert result.reason is NotJoinableReason.OUTSIDE_WINDOW

    async def test_scope(self, game):
        challenge = await _challenge(game, class_id=CLASS_ID, school_id=SCHOOL_ID)
        assert (await game.challenges.join(challenge.id, 1)).joined
        assert (await game.challenges.join(challenge.id, 5)).reason is NotJoinableReason.OUT_OF_SCOPE

    async def test_grade_scope(self, game):
        challenge = await _challenge(game, grade_level="6")
        assert (await game.challenges.join(challenge.id, 1)).reason is NotJoinableReason.OUT_OF_SCOPE
        assert (await game.challenges.join(challenge.id, 5)).joined

    async def test_concurrent_joins_respect_cap(self, game):
        challenge = await _challenge(game, max_participants=2)
        results = await asyncio.gather(*[game.challenges.join(challenge.id, sid) for sid in (1, 2, 3, 4)])
        assert sum(r.joined for r in results) == 2
        assert {r.reason for r in results if not r.joined} == {NotJoinableReason.FULL}
        assert (await game.challenges.get_challenge(challenge.id)).current_participants == 2

    async def test_missing_challenge_or_student(self, game):
        with pytest.raises(NotFound):
            await game.challenges.join(9999, 1)
        challenge = await _challenge(game)
        with pytest.raises(NotFound):
            await game.challenges.join(challenge.id, 404)


class TestProgress:
    async def test_retry_with_same_value(self, game, store, sink):
        """Values 2, 5 and a retried 5 complete once with one reward pair."""
        badge_id = await _badge_id(store, "streak_30")
        challenge = await _challenge(game, badge_reward=badge_id)
        await game.challenges.join(challenge.id, 1)

        first = await game.challenges.update_progress(challenge.id, 1, 2)
        second = await game.challenges.update_progress(challenge.id, 1, 5)
        retry = await game.challenges.update_progress(challenge.id, 1, 5)

        assert first.updated and not first.completed
        assert second.completed
        assert second.completion.xp_awarded and second.completion.badge_awarded
        assert second.completion.xp_earned == 50
        assert not retry.updated
        assert retry.completion is None

        participation = await _participation(store, challenge.id, 1)
        assert participation.current_value == 5
        assert participation.is_completed
        assert participation.completed_at is not None
        assert participation.xp_awarded and participation.badge_awarded
        assert [h["value"] for h in participation.progress_history] == [2, 5]
        assert await _reward_counts(store, 1, challenge.id, badge_id) == (1, 1)
        assert sink.kinds().count(CHALLENGE_COMPLETED) == 1

    async def test_lower_values_ignored(self, game, store):
        challenge = await _challenge(game, target_value=10)
        await game.challenges.join(challenge.id, 1)
        await game.challenges.update_progress(challenge.id, 1, 6)
        result = await game.challenges.update_progress(challenge.id, 1, 3)
        assert not result.updated
        assert result.current_value == 6
        assert (await _participation(store, challenge.id, 1)).current_value == 6

    async def test_concurrent_updates_are_monotonic(self, game, store):
        challenge = await _challenge(game, target_value=100)
        await game.challenges.join(challenge.id, 1)
        values = [7, 3, 12, 9, 1, 11, 4]
        await asyncio.gather(*[game.challenges.update_progress(challenge.id, 1, v) for v in values])

        participation = await _participation(store, challenge.id, 1)
        assert participation.current_value == 12
        recorded = [h["value"] for h in participation.progress_history]
        assert recorded == sorted(recorded)
        assert len(set(recorded)) == len(recorded)

    async def test_concurrent_completion(self, game, store):
        badge_id = await _badge_id(store, "streak_30")
        challenge = await _challenge(game, badge_reward=badge_id, target_value=3)
        await game.challenges.join(challenge.id, 2)
        results = await asyncio.gather(
            game.challenges.update_progress(challenge.id, 2, 3),
            game.challenges.update_progress(challenge.id, 2, 4),
            game.challenges.complete_challenge(challenge.id, 2),
            game.challenges.complete_challenge(challenge.id, 2),
        )
        completions = [r.completion if hasattr(r, "completion") else r for r in results]
        completions = [c for c in completions if c is not None]
        assert sum(c.xp_awarded for c in completions) == 1
        assert sum(c.badge_awarded for c in completions) == 1
        assert await _reward_counts(store, 2, challenge.id, badge_id) == (1, 1)

    async def test_complete_before_threshold_pays_nothing(self, game, store):
        challenge = await _challenge(game)
        await game.challenges.join(challenge.id, 1)
        outcome = await game.challenges.complete_challenge(challenge.id, 1)
        assert not outcome.xp_awarded
        assert not outcome.badge_awarded
        assert (await game.ledger.get_balance(1)).total_xp == 0

    async def test_not_joined(self, game):
        challenge = await _challenge(game)
        with pytest.raises(NotFound):
            await game.challenges.update_progress(challenge.id, 1, 3)

    async def test_no_reward_still_flags(self, game, store):
        challenge = await _challenge(game, xp_reward=0, target_value=1)
        await game.challenges.join(challenge.id, 1)
        result = await game.challenges.update_progress(challenge.id, 1, 1)
        assert result.completed
        assert result.completion.xp_earned == 0
        participation = await _participation(store, challenge.id, 1)
        assert participation.xp_awarded and participation.badge_awarded


class TestAutoAdvance:
    async def test_matching_metric_only(self, game, store):
        solved = await _challenge(game, title="Solve", target_value=3)
        minutes = await _challenge(game, title="Study", metric="time_spent", target_value=60)
        for c in (solved, minutes):
            await game.challenges.join(c.id, 1)

        results = await game.challenges.auto_advance(1, "problem_solved", 1)
        assert [r.challenge_id for r in results] == [solved.id]
        await game.challenges.auto_advance(1, "time_spent", 25)
        assert (await _participation(store, minutes.id, 1)).current_value == 25
        assert await game.challenges.auto_advance(1, "unknown_kind", 1) == []

    async def test_streak_is_absolute(self, game, store):
        challenge = await _challenge(game, metric="streak_days", target_value=5)
        await game.challenges.join(challenge.id, 1)
        await game.challenges.auto_advance(1, "streak", 3)
        await game.challenges.auto_advance(1, "streak", 3)
        assert (await _participation(store, challenge.id, 1)).current_value == 3
        await game.challenges.auto_advance(1, "streak", 1)
        assert (await _participation(store, challenge.id, 1)).current_value == 3
        results = await game.challenges.auto_advance(1, "streak", 5)
        assert results[0].completed

    async def test_subject_scoped(self, game, store):
        challenge = await _challenge(game, subject="math", target_value=3)
        await game.challenges.join(challenge.id, 1)
        await game.challenges.auto_advance(1, "problem_solved", 1, {"subject": "science"})
        await game.challenges.auto_advance(1, "problem_solved", 1, {"subject": "math"})
        assert (await _participation(store, challenge.id, 1)).current_value == 1

    async def test_accuracy_improvement_never_regresses(self, game, store):
        # Baseline 50% from the last 30 days.
        async with store.transaction() as s:
            before = datetime.now(timezone.utc) - timedelta(days=3)
            for i in range(10):
                s.add(ProblemAttempt(attempt_id=i + 1, student_id=1, difficulty="easy", hints_used=0,
                                     is_correct=i % 2 == 0, created_at=before))
        challenge = await _challenge(game, metric="accuracy_improvement", target_value=30)
        joined = await game.challenges.join(challenge.id, 1)
        assert joined.participation.starting_baseline == 50

        async def attempt(attempt_id: int, correct: bool) -> None:
            async with store.transaction() as s:
                s.add(ProblemAttempt(attempt_id=attempt_id, student_id=1, difficulty="easy", hints_used=0,
                                     is_correct=correct))
            await game.challenges.auto_advance(1, "problem_attempted", 1)

        # Four attempts are below the minimum sample; nothing moves.
        for n in range(4):
            await attempt(100 + n, True)
        assert (await _participation(store, challenge.id, 1)).current_value == 0

        await attempt(104, False)  # 4/5 = 80%
        assert (await _participation(store, challenge.id, 1)).current_value == 30
        assert (await _participation(store, challenge.id, 1)).is_completed

    async def test_accuracy_drop_clamped(self, game, store):
        async with store.transaction() as s:
            before = datetime.now(timezone.utc) - timedelta(days=3)
            for i in range(10):
                s.add(ProblemAttempt(attempt_id=i + 1, student_id=1, difficulty="easy", hints_used=0,
                                     is_correct=True, created_at=before))
        challenge = await _challenge(game, metric="accuracy_improvement", target_value=10)
        await game.challenges.join(challenge.id, 1)
        async with store.transaction() as s:
            for n in range(6):
                s.add(ProblemAttempt(attempt_id=200 + n, student_id=1, difficulty="easy", hints_used=0,
                                     is_correct=False))
        assert await game.challenges.auto_advance(1, "problem_attempted", 1) == []
        assert (await _participation(store, challenge.id, 1)).current_value == 0


class TestReads:
    async def test_student_challenges(self, game):
        a = await _challenge(game, title="A", target_value=1)
        b = await _challenge(game, title="B", target_value=10)
        for c in (a, b):
            await game.challenges.join(c.id, 1)
        await game.challenges.update_progress(a.id, 1, 1)

        all_rows = await game.challenges.get_student_challenges(1)
        open_rows = await game.challenges.get_student_challenges(1, include_completed=False)
        assert {p.challenge.title for p in all_rows} == {"A", "B"}
        assert [p.challenge.title for p in open_rows] == ["B"]

    async def test_challenge_leaderboard(self, game):
        challenge = await _challenge(game, target_value=5)
        for sid in (1, 2, 3):
            await game.challenges.join(challenge.id, sid)
        await game.challenges.update_progress(challenge.id, 2, 5)
        await game.challenges.update_progress(challenge.id, 3, 5)
        await game.challenges.update_progress(challenge.id, 1, 2)

        rows = await game.challenges.get_challenge_leaderboard(challenge.id)
        assert [p.student_id for p in rows] == [2, 3, 1]
