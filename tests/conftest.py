"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugame.api.dependencies import get_gamification
from edugame.config import Settings
from edugame.database import build_engine
from edugame.db.base import Base
from edugame.db.models import ClassEnrollment, SchoolClass, Student, XPTransaction
from edugame.events import CollectingEventSink
from edugame.gamification.seed import seed_badges
from edugame.main import create_app
from edugame.service import Gamification
from edugame.store import Store

SCHOOL_ID = 3
CLASS_ID = 7
OTHER_CLASS_ID = 8


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        redis_url="",
        scheduler_enabled=False,
        transient_retry_backoff_seconds=0.01,
        job_retry_backoff_seconds=0,
        instance_id="test-instance",
    )


@pytest.fixture
def sink() -> CollectingEventSink:
    return CollectingEventSink()


@pytest_asyncio.fixture
async def store(tmp_path, sink: CollectingEventSink) -> AsyncGenerator[Store, None]:
    """File-backed SQLite store with the full schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'edugame.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield Store(factory, retry_backoff_seconds=0.01, event_sink=sink)
    await engine.dispose()


@pytest_asyncio.fixture
async def roster(store: Store) -> dict[str, int]:
    """School 3 with grade-5 class 7 (students 1-4) and grade-6 class 8 (student 5)."""
    async with store.transaction() as s:
        s.add_all([
            SchoolClass(id=CLASS_ID, name="5A", grade_level="5", school_id=SCHOOL_ID, is_active=True),
            SchoolClass(id=OTHER_CLASS_ID, name="6B", grade_level="6", school_id=SCHOOL_ID, is_active=True),
        ])
        for student_id in range(1, 5):
            s.add(Student(id=student_id, display_name=f"Student {student_id}", grade_level="5", school_id=SCHOOL_ID))
        s.add(Student(id=5, display_name="Student 5", grade_level="6", school_id=SCHOOL_ID))
        s.add(Student(id=9, display_name="Ms. Teacher", school_id=SCHOOL_ID, role="teacher"))
        await s.flush()
        for student_id in range(1, 5):
            s.add(ClassEnrollment(student_id=student_id, class_id=CLASS_ID, is_active=True))
        s.add(ClassEnrollment(student_id=5, class_id=OTHER_CLASS_ID, is_active=True))
    return {"school_id": SCHOOL_ID, "class_id": CLASS_ID, "other_class_id": OTHER_CLASS_ID}


@pytest_asyncio.fixture
async def game(store: Store, settings: Settings, roster: dict[str, int]) -> Gamification:
    """Component graph over a seeded store."""
    await seed_badges(store)
    return Gamification.build(store, settings)


@pytest.fixture
def app(game: Gamification) -> FastAPI:
    """App with the gamification dependency overridden. Lifespan is not run."""
    application = create_app()
    application.dependency_overrides[get_gamification] = lambda: game
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def window(days_before: int = 1, days_after: int = 6) -> tuple[datetime, datetime]:
    now = datetime.now(timezone.utc)
    return now - timedelta(days=days_before), now + timedelta(days=days_after)


async def backdate_transactions(store: Store, student_id: int, days: int) -> None:
    """Move a student's XP transactions into the past."""
    async with store.transaction() as s:
        await s.execute(
            update(XPTransaction)
            .where(XPTransaction.student_id == student_id)
            .values(created_at=datetime.now(timezone.utc) - timedelta(days=days))
        )
