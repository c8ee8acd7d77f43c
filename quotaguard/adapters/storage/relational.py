"""Relational storage backend (SQLAlchemy).

One row per key in ``rate_limit_entries``. Counters and string values
(blacklist entries, stats) share the table; ``reset_at`` is the logical
expiry (0 = never) and is compared against the clock on every read, so
stale rows need no sweeper.

Atomicity:
    ``increment`` issues ``UPDATE ... SET count = count + 1 WHERE key = :key
    AND reset_at > :now`` and reads the count back inside the same
    transaction, so the row stays write-locked between the two statements.
    When no live row exists the stale row is replaced by a fresh window;
    two callers racing to open the same window collide on the primary key
    and the loser retries the UPDATE path. Concurrent openings are therefore
    serialized by the database, never merged.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable

from sqlalchemy import Float, Integer, String, Text, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from quotaguard.adapters.storage.base import (
    AbstractStorageBackend,
    StorageKind,
    split_pattern,
)
from quotaguard.core.config import DatabaseSettings
from quotaguard.core.errors import StorageAppError

logger = logging.getLogger(__name__)

_MAX_OPEN_RETRIES = 3


class Base(DeclarativeBase):
    """Declarative base for rate limiting tables."""


class RateLimitEntry(Base):
    """Row-per-key storage for window counters and string values.

    Attributes:
        key: Storage key (window, stats or blacklist namespace).
        count: Counter value for window keys.
        value: String payload for non-counter keys.
        window_size: Window duration in seconds (0 for values).
        reset_at: UNIX epoch seconds when the row expires (0 = never).
    """

    __tablename__ = "rate_limit_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    window_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reset_at: Mapped[float] = mapped_column(Float, default=0.0, nullable=False, index=True)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def connect_args_for(database_settings: DatabaseSettings) -> dict[str, Any]:
    """Driver arguments bounding connects and individual statements.

    - SQLite: ``timeout`` caps the wait on a locked database.
    - PostgreSQL: ``statement_timeout`` is set per session via ``options``.
    - MySQL/MariaDB: ``read_timeout``/``write_timeout`` cap each round trip.
    """

    url = database_settings.url
    if url.startswith("sqlite"):
        return {
            "timeout": database_settings.statement_timeout_seconds,
            "check_same_thread": False,
        }

    connect_args: dict[str, Any] = {"connect_timeout": database_settings.connect_timeout_seconds}
    if url.startswith("postgresql"):
        timeout_ms = int(database_settings.statement_timeout_seconds * 1000)
        connect_args["options"] = f"-c statement_timeout={timeout_ms}"
    elif url.startswith(("mysql", "mariadb")):
        timeout_s = max(1, math.ceil(database_settings.statement_timeout_seconds))
        connect_args["read_timeout"] = timeout_s
        connect_args["write_timeout"] = timeout_s
    return connect_args


def build_engine(database_settings: DatabaseSettings) -> Engine:
    """Create an engine whose connects, pool checkouts and statements are time bounded."""

    kwargs: dict[str, Any] = {
        "echo": database_settings.echo,
        "pool_pre_ping": True,
    }
    if not database_settings.url.startswith("sqlite"):
        kwargs["pool_timeout"] = database_settings.pool_timeout_seconds
    return create_engine(
        database_settings.url,
        connect_args=connect_args_for(database_settings),
        **kwargs,
    )


class RelationalStorage(AbstractStorageBackend):
    """Storage persisting counters in a SQL table.

    Args:
        engine: SQLAlchemy engine; the table is created if missing.
        clock: Time source function returning UNIX time in seconds.
    """

    kind = StorageKind.RELATIONAL

    def __init__(
        self,
        engine: Engine,
        *,
        clock: Callable[[], float] = time.time,
        create_tables: bool = True,
    ) -> None:
        self._engine = engine
        self._clock = clock
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        if create_tables:
            try:
                Base.metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise self._fail("create_tables", exc) from exc

    @classmethod
    def from_settings(cls, database_settings: DatabaseSettings) -> "RelationalStorage":
        return cls(build_engine(database_settings))

    def _fail(self, operation: str, exc: Exception) -> StorageAppError:
        logger.error(
            "storage.operation_failed",
            extra={
                "backend": self.kind.value,
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return StorageAppError(
            code="storage_unavailable",
            message=f"Database {operation} failed: {exc}",
            details={"backend": self.kind.value, "operation": operation},
        )

    def _live_row(self, session: Session, key: str, now: float) -> RateLimitEntry | None:
        row = session.get(RateLimitEntry, key)
        if row is None:
            return None
        if row.reset_at and row.reset_at <= now:
            return None
        return row

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError as exc:
            raise self._fail("ping", exc) from exc

    def close(self) -> None:
        self._engine.dispose()

    def get_count(self, key: str) -> int:
        try:
            with self._session_factory() as session:
                row = self._live_row(session, key, self._clock())
                return row.count if row else 0
        except SQLAlchemyError as exc:
            raise self._fail("get_count", exc) from exc

    def get_reset_time(self, key: str, window_seconds: int) -> int:
        now = self._clock()
        try:
            with self._session_factory() as session:
                row = self._live_row(session, key, now)
                if row and row.reset_at:
                    return int(math.ceil(row.reset_at))
        except SQLAlchemyError as exc:
            raise self._fail("get_reset_time", exc) from exc
        return int(now) + window_seconds

    def increment(self, key: str, expiry_seconds: int) -> int:
        for _ in range(_MAX_OPEN_RETRIES):
            now = self._clock()
            try:
                with self._session_factory.begin() as session:
                    result = session.execute(
                        update(RateLimitEntry)
                        .where(RateLimitEntry.key == key, RateLimitEntry.reset_at > now)
                        .values(count=RateLimitEntry.count + 1)
                    )
                    if result.rowcount:
                        return session.execute(
                            select(RateLimitEntry.count).where(RateLimitEntry.key == key)
                        ).scalar_one()

                    # Only a stale row may be replaced; a live row committed by a
                    # concurrent opener makes the INSERT collide and retry
                    session.execute(
                        delete(RateLimitEntry).where(
                            RateLimitEntry.key == key, RateLimitEntry.reset_at <= now
                        )
                    )
                    session.add(
                        RateLimitEntry(
                            key=key,
                            count=1,
                            window_size=expiry_seconds,
                            reset_at=now + expiry_seconds,
                        )
                    )
                    session.flush()
                    return 1
            except IntegrityError:
                # Another caller opened the window first; retry the UPDATE path
                continue
            except SQLAlchemyError as exc:
                raise self._fail("increment", exc) from exc
        raise StorageAppError(
            code="storage_contention",
            message=f"Could not open window for key after {_MAX_OPEN_RETRIES} attempts",
            details={"backend": self.kind.value, "operation": "increment"},
        )

    def decrement(self, key: str) -> int:
        now = self._clock()
        try:
            with self._session_factory.begin() as session:
                session.execute(
                    update(RateLimitEntry)
                    .where(
                        RateLimitEntry.key == key,
                        RateLimitEntry.reset_at > now,
                        RateLimitEntry.count > 0,
                    )
                    .values(count=RateLimitEntry.count - 1)
                )
                row = self._live_row(session, key, now)
                return row.count if row else 0
        except SQLAlchemyError as exc:
            raise self._fail("decrement", exc) from exc

    def exists(self, key: str) -> bool:
        try:
            with self._session_factory() as session:
                return self._live_row(session, key, self._clock()) is not None
        except SQLAlchemyError as exc:
            raise self._fail("exists", exc) from exc

    def get_value(self, key: str) -> str | None:
        try:
            with self._session_factory() as session:
                row = self._live_row(session, key, self._clock())
                return row.value if row else None
        except SQLAlchemyError as exc:
            raise self._fail("get_value", exc) from exc

    def set_with_expiry(self, key: str, value: str, expiry_seconds: int) -> bool:
        reset_at = self._clock() + expiry_seconds if expiry_seconds > 0 else 0.0
        try:
            with self._session_factory.begin() as session:
                session.merge(
                    RateLimitEntry(
                        key=key,
                        count=0,
                        value=value,
                        window_size=max(0, expiry_seconds),
                        reset_at=reset_at,
                    )
                )
        except SQLAlchemyError as exc:
            raise self._fail("set_with_expiry", exc) from exc
        return True

    def delete(self, key: str) -> bool:
        try:
            with self._session_factory.begin() as session:
                session.execute(delete(RateLimitEntry).where(RateLimitEntry.key == key))
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc
        return True

    def clear_keys(self, pattern: str) -> bool:
        prefix, wildcard = split_pattern(pattern)
        if wildcard:
            condition = RateLimitEntry.key.like(f"{_escape_like(prefix)}%", escape="\\")
        else:
            condition = RateLimitEntry.key == prefix
        try:
            with self._session_factory.begin() as session:
                session.execute(delete(RateLimitEntry).where(condition))
        except SQLAlchemyError as exc:
            raise self._fail("clear_keys", exc) from exc
        return True

    def get_ttl(self, key: str) -> int:
        now = self._clock()
        try:
            with self._session_factory() as session:
                row = self._live_row(session, key, now)
        except SQLAlchemyError as exc:
            raise self._fail("get_ttl", exc) from exc
        if row is None or not row.reset_at:
            return 0
        return max(0, int(math.ceil(row.reset_at - now)))
