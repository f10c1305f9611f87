"""Gamification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from edugame.api.dependencies import get_gamification
from edugame.api.schemas import (
    ActivityResponse,
    AllBadgesResponse,
    AllLevelsResponse,
    AwardBadgeRequest,
    AwardBadgeResponse,
    BadgeDefinitionResponse,
    BadgeProgressRequest,
    ChallengeLeaderboardEntry,
    ChallengeLeaderboardResponse,
    ChallengeListResponse,
    ChallengeProgressItem,
    ChallengeResponse,
    CreateChallengeRequest,
    EventResponse,
    EventsResponse,
    JoinChallengeRequest,
    JoinChallengeResponse,
    LeaderboardEntryResponse,
    LeaderboardHistoryResponse,
    LeaderboardPageResponse,
    LeaderboardResponse,
    LevelEntry,
    ParticipationResponse,
    ProblemCompletedRequest,
    SpendRequest,
    SpendResponse,
    StreakUpdatedRequest,
    StudentBadgeResponse,
    StudentBadgesResponse,
    StudentChallengesResponse,
    StudentPositionResponse,
    StudentPositionsResponse,
    TimeSpentRequest,
    XPHistoryResponse,
    XPResponse,
    XPTransactionResponse,
)
from edugame.events import list_events
from edugame.gamification.activity import ActivityOutcome
from edugame.gamification.challenges import ChallengeFilters
from edugame.gamification.level_thresholds import LEVEL_THRESHOLDS
from edugame.leaderboards.engine import LeaderboardPage
from edugame.service import Gamification

router = APIRouter(prefix="/api/v1/gamification", tags=["Gamification"])


def _page_response(page: LeaderboardPage, limit: int, offset: int) -> LeaderboardPageResponse:
    return LeaderboardPageResponse(
        leaderboard=LeaderboardResponse.model_validate(page.leaderboard),
        entries=[LeaderboardEntryResponse.model_validate(e) for e in page.entries],
        total=page.total,
        limit=limit,
        offset=offset,
    )


def _activity_response(outcome: ActivityOutcome) -> ActivityResponse:
    return ActivityResponse(
        duplicate=outcome.duplicate,
        xp_earned=outcome.xp_earned,
        level=outcome.level,
        badges_awarded=[b.badge_id for b in outcome.badges],
        challenges=[
            ChallengeProgressItem(challenge_id=c.challenge_id, current_value=c.current_value, completed=c.completed)
            for c in outcome.challenges
        ],
    )


# ── XP ──


@router.get("/students/{student_id}/xp", response_model=XPResponse)
async def get_xp(student_id: int, game: Gamification = Depends(get_gamification)):
    """Current XP balance and level progress."""
    account = await game.ledger.get_balance(student_id)
    info = game.ledger.level_progress(account)
    return XPResponse(
        student_id=student_id,
        total_xp=account.total_xp,
        available_xp=account.available_xp,
        spent_xp=account.spent_xp,
        weekly_xp=account.weekly_xp,
        monthly_xp=account.monthly_xp,
        level=account.level,
        level_title=info["title"],
        current_level_xp=info["current_level_xp"],
        next_level_xp=info["next_level_xp"],
        xp_into_level=info["xp_into_level"],
        xp_to_next_level=info["xp_to_next_level"],
        progress_percent=info["progress_percent"],
        is_max_level=info["is_max_level"],
    )


@router.get("/students/{student_id}/xp/transactions", response_model=XPHistoryResponse)
async def get_xp_transactions(
    student_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    game: Gamification = Depends(get_gamification),
):
    """Paginated XP transaction history, newest first."""
    rows, total = await game.ledger.get_transaction_history(student_id, limit, offset)
    return XPHistoryResponse(
        transactions=[XPTransactionResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/students/{student_id}/xp/spend", response_model=SpendResponse)
async def spend_xp(
    student_id: int,
    body: SpendRequest,
    game: Gamification = Depends(get_gamification),
):
    """Redeem XP for a reward."""
    details = {"reward_id": body.reward_id} if body.reward_id is not None else None
    txn = await game.ledger.spend(student_id, body.amount, "reward_redemption", body.description, details=details)
    return SpendResponse(
        transaction=XPTransactionResponse.model_validate(txn),
        available_xp=txn.balance_after,
    )


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels():
    """Full level threshold table."""
    return AllLevelsResponse(
        levels=[LevelEntry(level=t["level"], title=t["title"], xp_required=t["cumulative"]) for t in LEVEL_THRESHOLDS]
    )


# ── Badges ──


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(
    category: str | None = None,
    grade_level: str | None = None,
    subject: str | None = None,
    include_secret: bool = False,
    game: Gamification = Depends(get_gamification),
):
    """Badge catalog. Secret badges are hidden unless requested."""
    badges = await game.badges.list_definitions(
        category=category,
        grade_level=grade_level,
        subject=subject,
        include_secret=include_secret,
    )
    return AllBadgesResponse(badges=[BadgeDefinitionResponse.model_validate(b) for b in badges])


@router.get("/students/{student_id}/badges", response_model=StudentBadgesResponse)
async def get_student_badges(
    student_id: int,
    include_progress: bool = True,
    game: Gamification = Depends(get_gamification),
):
    rows = await game.badges.get_student_badges(student_id, include_progress)
    return StudentBadgesResponse(
        student_id=student_id,
        badges=[
            StudentBadgeResponse(
                badge=BadgeDefinitionResponse.model_validate(r.badge),
                progress=r.progress,
                is_earned=r.is_earned,
                earned_at=r.earned_at,
            )
            for r in rows
        ],
        total_earned=sum(1 for r in rows if r.is_earned),
    )


@router.post("/badges/award", response_model=AwardBadgeResponse)
async def award_badge(body: AwardBadgeRequest, game: Gamification = Depends(get_gamification)):
    """Manually award a badge (teacher/admin tooling)."""
    result = await game.badges.award(body.student_id, body.badge_id, body.metadata or None)
    return AwardBadgeResponse(badge_id=result.badge_id, awarded=result.awarded, xp_earned=result.xp_earned)


@router.post("/badges/progress", response_model=AwardBadgeResponse)
async def update_badge_progress(body: BadgeProgressRequest, game: Gamification = Depends(get_gamification)):
    """Record partial progress on an unearned badge. 100 awards it."""
    result = await game.badges.update_progress(body.student_id, body.badge_id, body.progress)
    return AwardBadgeResponse(badge_id=result.badge_id, awarded=result.awarded, xp_earned=result.xp_earned)


# ── Challenges ──


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_challenges(
    type: list[str] | None = Query(None),  # noqa: A002
    metric: str | None = None,
    grade_level: str | None = None,
    subject: str | None = None,
    school_id: int | None = None,
    class_id: int | None = None,
    active_only: bool = True,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    game: Gamification = Depends(get_gamification),
):
    challenges = await game.challenges.get_challenges(
        ChallengeFilters(
            types=type,
            metric=metric,
            grade_level=grade_level,
            subject=subject,
            school_id=school_id,
            class_id=class_id,
            active_only=active_only,
            limit=limit,
            offset=offset,
        )
    )
    return ChallengeListResponse(challenges=[ChallengeResponse.model_validate(c) for c in challenges])


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create_challenge(body: CreateChallengeRequest, game: Gamification = Depends(get_gamification)):
    challenge = await game.challenges.create_challenge(**body.model_dump())
    return ChallengeResponse.model_validate(challenge)


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(challenge_id: int, game: Gamification = Depends(get_gamification)):
    return ChallengeResponse.model_validate(await game.challenges.get_challenge(challenge_id))


@router.post("/challenges/{challenge_id}/join", response_model=JoinChallengeResponse)
async def join_challenge(
    challenge_id: int,
    body: JoinChallengeRequest,
    game: Gamification = Depends(get_gamification),
):
    """Join a challenge. A refused join is a normal response with a reason."""
    result = await game.challenges.join(challenge_id, body.student_id)
    return JoinChallengeResponse(
        challenge_id=challenge_id,
        joined=result.joined,
        reason=result.reason.value if result.reason else None,
    )


@router.get("/students/{student_id}/challenges", response_model=StudentChallengesResponse)
async def get_student_challenges(
    student_id: int,
    include_completed: bool = True,
    game: Gamification = Depends(get_gamification),
):
    rows = await game.challenges.get_student_challenges(student_id, include_completed)
    return StudentChallengesResponse(
        student_id=student_id,
        challenges=[
            ParticipationResponse(
                challenge=ChallengeResponse.model_validate(p.challenge),
                current_value=p.current_value,
                progress_percent=round(min(100.0, p.current_value / p.challenge.target_value * 100), 2),
                is_completed=p.is_completed,
                completed_at=p.completed_at,
                joined_at=p.joined_at,
                xp_awarded=p.xp_awarded,
                badge_awarded=p.badge_awarded,
            )
            for p in rows
        ],
    )


@router.get("/challenges/{challenge_id}/leaderboard", response_model=ChallengeLeaderboardResponse)
async def get_challenge_leaderboard(
    challenge_id: int,
    limit: int = Query(10, ge=1, le=100),
    game: Gamification = Depends(get_gamification),
):
    rows = await game.challenges.get_challenge_leaderboard(challenge_id, limit)
    return ChallengeLeaderboardResponse(
        challenge_id=challenge_id,
        entries=[
            ChallengeLeaderboardEntry(
                rank=idx + 1,
                student_id=p.student_id,
                current_value=p.current_value,
                is_completed=p.is_completed,
                completed_at=p.completed_at,
            )
            for idx, p in enumerate(rows)
        ],
    )


# ── Leaderboards ──


@router.get("/leaderboards", response_model=LeaderboardPageResponse)
async def get_leaderboard(
    type: str = Query(...),  # noqa: A002
    scope: str = Query(...),
    scope_id: str = Query(...),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    game: Gamification = Depends(get_gamification),
):
    """Current ranking for a (type, scope, scope_id) key."""
    page = await game.leaderboards.get_leaderboard(type, scope, scope_id, limit, offset)
    return _page_response(page, limit, offset)


@router.get("/leaderboards/history", response_model=LeaderboardHistoryResponse)
async def get_leaderboard_history(
    type: list[str] | None = Query(None),  # noqa: A002
    scope: str | None = None,
    scope_id: str | None = None,
    include_archived: bool = True,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    game: Gamification = Depends(get_gamification),
):
    boards = await game.leaderboards.get_history(type, scope, scope_id, include_archived, limit, offset)
    return LeaderboardHistoryResponse(leaderboards=[LeaderboardResponse.model_validate(b) for b in boards])


@router.get("/leaderboards/{leaderboard_id}/entries", response_model=LeaderboardPageResponse)
async def get_leaderboard_entries(
    leaderboard_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    game: Gamification = Depends(get_gamification),
):
    page = await game.leaderboards.get_entries(leaderboard_id, limit, offset)
    return _page_response(page, limit, offset)


@router.get("/students/{student_id}/leaderboard-positions", response_model=StudentPositionsResponse)
async def get_student_positions(
    student_id: int,
    limit: int = Query(20, ge=1, le=100),
    game: Gamification = Depends(get_gamification),
):
    positions = await game.leaderboards.get_student_positions(student_id, limit)
    return StudentPositionsResponse(
        student_id=student_id,
        positions=[
            StudentPositionResponse(
                leaderboard=LeaderboardResponse.model_validate(p.leaderboard),
                rank=p.entry.rank,
                score=p.entry.score,
                previous_rank=p.entry.previous_rank,
                trend_direction=p.entry.trend_direction,
                rank_change=p.rank_change,
            )
            for p in positions
        ],
    )


# ── Events ──


@router.get("/students/{student_id}/events", response_model=EventsResponse)
async def get_student_events(
    student_id: int,
    after_id: int | None = None,
    limit: int = Query(50, ge=1, le=100),
    game: Gamification = Depends(get_gamification),
):
    """Notification-worthy events for the notification service, oldest first."""
    events = await list_events(game.store, student_id, after_id, limit)
    return EventsResponse(
        events=[EventResponse(**e) for e in events],
        next_cursor=events[-1]["id"] if events else after_id,
    )


# ── Activity intake ──


@router.post("/activity/problem-completed", response_model=ActivityResponse)
async def problem_completed(body: ProblemCompletedRequest, game: Gamification = Depends(get_gamification)):
    outcome = await game.activity.problem_completed(
        body.student_id,
        body.difficulty,
        body.hints_used,
        body.is_correct,
        body.attempt_id,
        topic=body.topic,
        subject=body.subject,
        session_id=body.session_id,
    )
    return _activity_response(outcome)


@router.post("/activity/time-spent", response_model=ActivityResponse)
async def time_spent(body: TimeSpentRequest, game: Gamification = Depends(get_gamification)):
    outcome = await game.activity.time_spent(body.student_id, body.activity_date, body.minutes_delta)
    return _activity_response(outcome)


@router.post("/activity/streak-updated", response_model=ActivityResponse)
async def streak_updated(body: StreakUpdatedRequest, game: Gamification = Depends(get_gamification)):
    outcome = await game.activity.streak_updated(body.student_id, body.current_streak_days)
    return _activity_response(outcome)
