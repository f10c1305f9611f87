"""HTTP surface of the gamification API."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from conftest import CLASS_ID, window
from edugame.db.models import BadgeDefinition
from edugame.errors import TransientStoreFailure

pytestmark = pytest.mark.asyncio

BASE = "/api/v1/gamification"


def _challenge_body(**overrides) -> dict:
    start, end = window()
    body = {
        "title": "Solve three",
        "type": "weekly",
        "metric": "problems_solved",
        "target_value": 3,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "xp_reward": 30,
    }
    body.update(overrides)
    return body


class TestXPEndpoints:
    async def test_balance_of_new_student(self, client: AsyncClient):
        response = await client.get(f"{BASE}/students/1/xp")
        assert response.status_code == 200
        data = response.json()
        assert data["total_xp"] == 0
        assert data["level"] == 1
        assert data["is_max_level"] is False

    async def test_spend_and_history(self, client: AsyncClient, game):
        await game.ledger.earn(1, 150, "problem_completion")
        response = await client.post(
            f"{BASE}/students/1/xp/spend", json={"amount": 50, "description": "Sticker", "reward_id": 4}
        )
        assert response.status_code == 200
        assert response.json()["available_xp"] == 100
        assert response.json()["transaction"]["amount"] == -50

        history = await client.get(f"{BASE}/students/1/xp/transactions", params={"limit": 1})
        data = history.json()
        assert data["total"] == 2
        assert [t["source"] for t in data["transactions"]] == ["reward_redemption"]

    async def test_overspend_is_conflict(self, client: AsyncClient, game):
        await game.ledger.earn(1, 20, "problem_completion")
        response = await client.post(f"{BASE}/students/1/xp/spend", json={"amount": 21, "description": "Hat"})
        assert response.status_code == 409
        assert response.json()["available"] == 20
        assert response.json()["requested"] == 21

    async def test_non_positive_spend_rejected(self, client: AsyncClient):
        response = await client.post(f"{BASE}/students/1/xp/spend", json={"amount": 0, "description": "Hat"})
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    async def test_unknown_student(self, client: AsyncClient):
        response = await client.get(f"{BASE}/students/404/xp")
        assert response.status_code == 404

    async def test_levels(self, client: AsyncClient):
        levels = (await client.get(f"{BASE}/levels")).json()["levels"]
        assert levels[0] == {"level": 1, "title": levels[0]["title"], "xp_required": 0}
        assert [lv["level"] for lv in levels] == sorted(lv["level"] for lv in levels)

    async def test_transient_failure_is_503(self, client: AsyncClient, game, monkeypatch):
        async def unavailable(student_id):
            raise TransientStoreFailure("lock timeout")

        monkeypatch.setattr(game.ledger, "get_balance", unavailable)
        response = await client.get(f"{BASE}/students/1/xp")
        assert response.status_code == 503
        assert response.json() == {"detail": "Service temporarily unavailable"}


class TestBadgeEndpoints:
    async def test_catalog_hides_secret(self, client: AsyncClient):
        visible = (await client.get(f"{BASE}/badges")).json()["badges"]
        everything = (await client.get(f"{BASE}/badges", params={"include_secret": True})).json()["badges"]
        assert len(everything) == len(visible) + 1

    async def test_award_once(self, client: AsyncClient, store):
        async with store.transaction() as s:
            badge_id = (
                await s.execute(select(BadgeDefinition.id).where(BadgeDefinition.slug == "first_steps"))
            ).scalar_one()
        first = await client.post(f"{BASE}/badges/award", json={"student_id": 2, "badge_id": badge_id})
        second = await client.post(f"{BASE}/badges/award", json={"student_id": 2, "badge_id": badge_id})
        assert first.json() == {"badge_id": badge_id, "awarded": True, "xp_earned": 25}
        assert second.json()["awarded"] is False

        badges = (await client.get(f"{BASE}/students/2/badges")).json()
        assert badges["total_earned"] == 1

    async def test_progress_then_award(self, client: AsyncClient, store):
        async with store.transaction() as s:
            badge_id = (
                await s.execute(select(BadgeDefinition.id).where(BadgeDefinition.slug == "first_steps"))
            ).scalar_one()

        url = f"{BASE}/badges/progress"
        partial = await client.post(url, json={"student_id": 2, "badge_id": badge_id, "progress": 40})
        assert partial.json() == {"badge_id": badge_id, "awarded": False, "xp_earned": 0}
        badges = (await client.get(f"{BASE}/students/2/badges")).json()
        assert [(b["progress"], b["is_earned"]) for b in badges["badges"]] == [(40.0, False)]

        done = await client.post(url, json={"student_id": 2, "badge_id": badge_id, "progress": 100})
        assert done.json() == {"badge_id": badge_id, "awarded": True, "xp_earned": 25}

    async def test_progress_out_of_range(self, client: AsyncClient):
        body = {"student_id": 2, "badge_id": 1, "progress": 120}
        response = await client.post(f"{BASE}/badges/progress", json=body)
        assert response.status_code == 422

    async def test_award_unknown_badge(self, client: AsyncClient):
        response = await client.post(f"{BASE}/badges/award", json={"student_id": 2, "badge_id": 9999})
        assert response.status_code == 404


class TestChallengeEndpoints:
    async def test_create_join_and_list(self, client: AsyncClient):
        created = await client.post(f"{BASE}/challenges", json=_challenge_body(class_id=CLASS_ID))
        assert created.status_code == 201
        challenge_id = created.json()["id"]

        joined = await client.post(f"{BASE}/challenges/{challenge_id}/join", json={"student_id": 1})
        assert joined.json() == {"challenge_id": challenge_id, "joined": True, "reason": None}
        again = await client.post(f"{BASE}/challenges/{challenge_id}/join", json={"student_id": 1})
        assert again.json()["reason"] == "already_joined"
        outsider = await client.post(f"{BASE}/challenges/{challenge_id}/join", json={"student_id": 5})
        assert outsider.json()["reason"] == "out_of_scope"

        listed = (await client.get(f"{BASE}/challenges", params={"class_id": CLASS_ID})).json()["challenges"]
        assert [c["id"] for c in listed] == [challenge_id]
        mine = (await client.get(f"{BASE}/students/1/challenges")).json()["challenges"]
        assert mine[0]["progress_percent"] == 0.0

    async def test_list_by_several_types(self, client: AsyncClient):
        for challenge_type in ("daily", "weekly", "monthly"):
            await client.post(f"{BASE}/challenges", json=_challenge_body(type=challenge_type, title=challenge_type))
        response = await client.get(f"{BASE}/challenges", params=[("type", "daily"), ("type", "monthly")])
        assert sorted(c["type"] for c in response.json()["challenges"]) == ["daily", "monthly"]

    async def test_progress_via_activity(self, client: AsyncClient):
        challenge_id = (await client.post(f"{BASE}/challenges", json=_challenge_body(target_value=1))).json()["id"]
        await client.post(f"{BASE}/challenges/{challenge_id}/join", json={"student_id": 3})

        response = await client.post(
            f"{BASE}/activity/problem-completed",
            json={"student_id": 3, "attempt_id": 77, "difficulty": "easy", "hints_used": 0, "is_correct": True},
        )
        data = response.json()
        assert data["xp_earned"] == 15
        assert data["challenges"] == [{"challenge_id": challenge_id, "current_value": 1, "completed": True}]

        board = (await client.get(f"{BASE}/challenges/{challenge_id}/leaderboard")).json()
        assert board["entries"][0]["student_id"] == 3
        assert board["entries"][0]["is_completed"] is True

    async def test_invalid_window_rejected(self, client: AsyncClient):
        start, end = window()
        body = _challenge_body(start_date=end.isoformat(), end_date=start.isoformat())
        response = await client.post(f"{BASE}/challenges", json=body)
        assert response.status_code == 422
        data = response.json()
        assert data["detail"] == "Validation error"
        assert "end_date must be after start_date" in data["errors"][0]["msg"]

    async def test_unknown_badge_reward_is_bad_request(self, client: AsyncClient):
        response = await client.post(f"{BASE}/challenges", json=_challenge_body(badge_reward=9999))
        assert response.status_code == 400

    async def test_missing_challenge(self, client: AsyncClient):
        assert (await client.get(f"{BASE}/challenges/9999")).status_code == 404


class TestLeaderboardEndpoints:
    async def test_current_board_and_positions(self, client: AsyncClient, game):
        await game.ledger.earn(2, 90, "problem_completion")
        board = await game.leaderboards.create_leaderboard("weekly_xp", "class", str(CLASS_ID))

        response = await client.get(
            f"{BASE}/leaderboards", params={"type": "weekly_xp", "scope": "class", "scope_id": CLASS_ID}
        )
        data = response.json()
        assert data["leaderboard"]["id"] == board.id
        assert data["total"] == 4
        assert data["entries"][0] == {
            "rank": 1, "student_id": 2, "score": 90.0, "previous_rank": None, "trend_direction": "new",
        }

        entries = (await client.get(f"{BASE}/leaderboards/{board.id}/entries", params={"offset": 3})).json()
        assert [e["rank"] for e in entries["entries"]] == [4]

        positions = (await client.get(f"{BASE}/students/2/leaderboard-positions")).json()["positions"]
        assert positions[0]["rank"] == 1
        history = (await client.get(f"{BASE}/leaderboards/history", params={"type": "weekly_xp"})).json()
        assert [b["id"] for b in history["leaderboards"]] == [board.id]

    async def test_missing_board(self, client: AsyncClient):
        response = await client.get(
            f"{BASE}/leaderboards", params={"type": "weekly_xp", "scope": "class", "scope_id": "99"}
        )
        assert response.status_code == 404

    async def test_query_is_required(self, client: AsyncClient):
        assert (await client.get(f"{BASE}/leaderboards", params={"type": "weekly_xp"})).status_code == 422


class TestActivityAndEvents:
    async def test_duplicate_problem(self, client: AsyncClient):
        body = {"student_id": 1, "attempt_id": 5, "difficulty": "hard", "hints_used": 2, "is_correct": True}
        first = (await client.post(f"{BASE}/activity/problem-completed", json=body)).json()
        second = (await client.post(f"{BASE}/activity/problem-completed", json=body)).json()
        assert first["duplicate"] is False
        assert first["xp_earned"] == 20
        assert len(first["badges_awarded"]) == 1
        assert second == {"duplicate": True, "xp_earned": 0, "level": None, "badges_awarded": [], "challenges": []}

    async def test_streak_and_time(self, client: AsyncClient):
        streak = await client.post(f"{BASE}/activity/streak-updated", json={"student_id": 4, "current_streak_days": 3})
        assert len(streak.json()["badges_awarded"]) == 1
        minutes = await client.post(
            f"{BASE}/activity/time-spent", json={"student_id": 4, "activity_date": "2026-10-19", "minutes_delta": 25}
        )
        assert minutes.status_code == 200
        bad = await client.post(
            f"{BASE}/activity/time-spent", json={"student_id": 4, "activity_date": "2026-10-19", "minutes_delta": 0}
        )
        assert bad.status_code == 422

    async def test_events_cursor(self, client: AsyncClient, game):
        await game.ledger.earn(1, 100, "problem_completion")  # level up
        await game.ledger.earn(1, 450, "problem_completion")  # level up and 500 milestone

        page = (await client.get(f"{BASE}/students/1/events", params={"limit": 2})).json()
        assert [e["kind"] for e in page["events"]] == ["level_up", "level_up"]
        rest = (await client.get(f"{BASE}/students/1/events", params={"after_id": page["next_cursor"]})).json()
        assert [e["kind"] for e in rest["events"]] == ["xp_milestone"]
        empty = (await client.get(f"{BASE}/students/1/events", params={"after_id": rest["next_cursor"]})).json()
        assert empty == {"events": [], "next_cursor": rest["next_cursor"]}
