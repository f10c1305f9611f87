"""Store access interface injected into every gamification component.

Wraps an ``async_sessionmaker`` and owns the transaction boundary: commit on
success, rollback on any exception, translation of driver lock/connection
failures into ``TransientStoreFailure``, and publication of queued events once
the transaction has committed.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol, TypeVar

from sqlalchemy import event, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from edugame.errors import TransientStoreFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

PENDING_EVENTS_KEY = "pending_events"

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "57014"})


class EventSink(Protocol):
    async def publish(self, events: list[dict[str, Any]]) -> None: ...


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code in _TRANSIENT_SQLSTATES
    return False


def advisory_key(name: str) -> int:
    """Map a lock name to a signed 64-bit advisory lock key."""
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite transactions take the write lock up front.

    pysqlite's deferred BEGIN lets two writers read the same row and then
    fail on upgrade; BEGIN IMMEDIATE serialises them the way row locks do.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Store:
    """Transaction scope plus dialect helpers over one session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        retry_backoff_seconds: float = 0.2,
        event_sink: EventSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._retry_backoff = retry_backoff_seconds
        self.event_sink = event_sink

    @property
    def dialect_name(self) -> str:
        bind = self._session_factory.kw.get("bind")
        return bind.dialect.name if bind is not None else "postgresql"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session, begin, yield, commit. Roll back on any exception."""
        session = self._session_factory()
        try:
            try:
                async with session.begin():
                    yield session
            except Exception as exc:
                if _is_transient(exc):
                    raise TransientStoreFailure(str(exc)) from exc
                raise
            pending = session.info.pop(PENDING_EVENTS_KEY, [])
        finally:
            await session.close()

        if pending and self.event_sink is not None:
            try:
                await self.event_sink.publish(pending)
            except Exception:
                logger.warning("Failed to publish %d gamification events", len(pending), exc_info=True)

    @asynccontextmanager
    async def use(self, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
        """Join the caller's transaction when given one, otherwise open a new one."""
        if session is not None:
            yield session
            return
        async with self.transaction() as own:
            yield own

    async def retry_transient(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` and retry it once after a backoff on a transient failure."""
        try:
            return await fn()
        except TransientStoreFailure:
            logger.warning("Transient store failure, retrying once in %.2fs", self._retry_backoff)
            await asyncio.sleep(self._retry_backoff)
            return await fn()

    def insert(self, table: Any) -> Any:
        """Dialect-specific INSERT supporting ON CONFLICT clauses."""
        if self.dialect_name == "sqlite":
            return sqlite_insert(table)
        return pg_insert(table)

    async def try_advisory_lock(self, session: AsyncSession, name: str) -> bool:
        """Take a transaction-scoped advisory lock. Released on commit/rollback.

        SQLite has no advisory locks; its BEGIN IMMEDIATE already serialises
        writers, so the lock is always granted there.
        """
        if self.dialect_name != "postgresql":
            return True
        result = await session.execute(
            text("SELECT pg_try_advisory_xact_lock(:key)"),
            {"key": advisory_key(name)},
        )
        return bool(result.scalar())


def queue_event(session: AsyncSession, payload: dict[str, Any]) -> None:
    """Queue a payload for publication after the session's transaction commits."""
    session.info.setdefault(PENDING_EVENTS_KEY, []).append(payload)
