"""Async SQLAlchemy engine and store lifecycle."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from edugame.store import EventSink, Store, configure_sqlite

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_store: Store | None = None


def build_engine(url: str) -> AsyncEngine:
    """Create an engine with pool options suited to the backend."""
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})
        configure_sqlite(engine)
        return engine
    return create_async_engine(
        url,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
        echo=False,
        connect_args={"statement_cache_size": 0},
    )


async def init_db(
    url: str,
    *,
    retry_backoff_seconds: float = 0.2,
    event_sink: EventSink | None = None,
) -> None:
    """Initialize the database engine, session factory and store."""
    global _engine, _session_factory, _store  # noqa: PLW0603
    _engine = build_engine(url)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    _store = Store(
        _session_factory,
        retry_backoff_seconds=retry_backoff_seconds,
        event_sink=event_sink,
    )


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory, _store  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None
    _session_factory = None
    _store = None


def get_store() -> Store:
    """Get the shared store."""
    if _store is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _store


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    async with _session_factory() as session:
        yield session
