"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- XP ---


class XPResponse(BaseModel):
    student_id: int
    total_xp: int
    available_xp: int
    spent_xp: int
    weekly_xp: int
    monthly_xp: int
    level: int
    level_title: str
    current_level_xp: int
    next_level_xp: int
    xp_into_level: int
    xp_to_next_level: int
    progress_percent: float
    is_max_level: bool


class XPTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: int
    source: str
    description: str
    balance_before: int
    balance_after: int
    session_id: int | None = None
    created_at: datetime


class XPHistoryResponse(BaseModel):
    transactions: list[XPTransactionResponse]
    total: int
    limit: int
    offset: int


class SpendRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    reward_id: int | None = None


class SpendResponse(BaseModel):
    transaction: XPTransactionResponse
    available_xp: int


class LevelEntry(BaseModel):
    level: int
    title: str
    xp_required: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


# --- Badges ---


class BadgeDefinitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    description: str
    icon: str
    category: str
    tier: str
    xp_reward: int
    grade_level: str | None = None
    subject: str | None = None
    is_secret: bool


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class StudentBadgeResponse(BaseModel):
    badge: BadgeDefinitionResponse
    progress: float
    is_earned: bool
    earned_at: datetime | None = None


class StudentBadgesResponse(BaseModel):
    student_id: int
    badges: list[StudentBadgeResponse]
    total_earned: int


class AwardBadgeRequest(BaseModel):
    student_id: int
    badge_id: int
    metadata: dict = {}


class BadgeProgressRequest(BaseModel):
    student_id: int
    badge_id: int
    progress: float = Field(ge=0, le=100)


class AwardBadgeResponse(BaseModel):
    badge_id: int
    awarded: bool
    xp_earned: int


# --- Challenges ---


ChallengeType = Literal["daily", "weekly", "monthly", "special"]
ChallengeMetric = Literal["problems_solved", "perfect_problems", "time_spent", "streak_days", "accuracy_improvement"]


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    type: str
    metric: str
    target_value: int
    xp_reward: int
    badge_reward: int | None = None
    grade_level: str | None = None
    subject: str | None = None
    school_id: int | None = None
    class_id: int | None = None
    is_active: bool
    max_participants: int | None = None
    current_participants: int
    start_date: datetime
    end_date: datetime


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]


class CreateChallengeRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    type: ChallengeType
    metric: ChallengeMetric
    target_value: int = Field(gt=0)
    start_date: datetime
    end_date: datetime
    xp_reward: int = Field(default=0, ge=0)
    badge_reward: int | None = None
    grade_level: str | None = None
    subject: str | None = None
    school_id: int | None = None
    class_id: int | None = None
    created_by: int | None = None
    max_participants: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _window(self) -> CreateChallengeRequest:
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class JoinChallengeRequest(BaseModel):
    student_id: int


class JoinChallengeResponse(BaseModel):
    challenge_id: int
    joined: bool
    reason: str | None = None


class ParticipationResponse(BaseModel):
    challenge: ChallengeResponse
    current_value: int
    progress_percent: float
    is_completed: bool
    completed_at: datetime | None = None
    joined_at: datetime
    xp_awarded: bool
    badge_awarded: bool


class StudentChallengesResponse(BaseModel):
    student_id: int
    challenges: list[ParticipationResponse]


class ChallengeLeaderboardEntry(BaseModel):
    rank: int
    student_id: int
    current_value: int
    is_completed: bool
    completed_at: datetime | None = None


class ChallengeLeaderboardResponse(BaseModel):
    challenge_id: int
    entries: list[ChallengeLeaderboardEntry]


# --- Leaderboards ---


class LeaderboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    scope: str
    scope_id: str
    period_type: str
    period_start: datetime
    period_end: datetime
    is_active: bool
    is_current: bool


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    student_id: int
    score: float
    previous_rank: int | None = None
    trend_direction: str


class LeaderboardPageResponse(BaseModel):
    leaderboard: LeaderboardResponse
    entries: list[LeaderboardEntryResponse]
    total: int
    limit: int
    offset: int


class LeaderboardHistoryResponse(BaseModel):
    leaderboards: list[LeaderboardResponse]


class StudentPositionResponse(BaseModel):
    leaderboard: LeaderboardResponse
    rank: int
    score: float
    previous_rank: int | None = None
    trend_direction: str
    rank_change: int | None = None


class StudentPositionsResponse(BaseModel):
    student_id: int
    positions: list[StudentPositionResponse]


# --- Events ---


class EventResponse(BaseModel):
    id: int
    student_id: int
    kind: str
    title: str
    description: str
    xp_earned: int | None = None
    badge_id: int | None = None
    challenge_id: int | None = None
    leaderboard_id: int | None = None
    created_at: datetime


class EventsResponse(BaseModel):
    events: list[EventResponse]
    next_cursor: int | None = None


# --- Activity intake ---


class ProblemCompletedRequest(BaseModel):
    student_id: int
    attempt_id: int
    difficulty: Literal["easy", "medium", "hard"]
    hints_used: int = Field(ge=0)
    is_correct: bool
    topic: str | None = None
    subject: str | None = None
    session_id: int | None = None


class TimeSpentRequest(BaseModel):
    student_id: int
    activity_date: date
    minutes_delta: int = Field(gt=0)


class StreakUpdatedRequest(BaseModel):
    student_id: int
    current_streak_days: int = Field(ge=0)


class ChallengeProgressItem(BaseModel):
    challenge_id: int
    current_value: int
    completed: bool


class ActivityResponse(BaseModel):
    duplicate: bool
    xp_earned: int
    level: int | None = None
    badges_awarded: list[int]
    challenges: list[ChallengeProgressItem]
