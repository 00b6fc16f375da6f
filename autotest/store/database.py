"""SQLAlchemy adapter for the ResultStore protocol.

Each collection is a table holding the indexed key columns next to the full
record as JSON. Outputs carry a unique constraint on ``(commit_url,
deliv_id)`` so the database itself refuses a second result for a key, and
resolutions carry one on the request identity so only one deliverer wins.
Inserts are single-row transactions, so concurrent writers never overwrite
each other.

Usage
-----
>>> from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
>>> engine = create_async_engine("sqlite+aiosqlite:///autotest.db")
>>> await init_store_schema(engine)
>>> store = DatabaseResultStore(
...     async_sessionmaker(engine, expire_on_commit=False), instance="default"
... )

"""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec
from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from autotest.common.time import utcnow
from autotest.config import TEST_INSTANCE
from autotest.errors import (
    ConfigurationError,
    DuplicateRecordError,
    PersistenceError,
    RequestAlreadyResolvedError,
)
from autotest.logging import get_logger, log_info, log_warning
from autotest.models import (
    CommentEvent,
    CommitRecord,
    ContainerInput,
    FeedbackGiven,
    RequestResolution,
    StoreSnapshot,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = get_logger(__name__)

_URL_LENGTH = 512
_ID_LENGTH = 128


class Base(DeclarativeBase):
    """Declarative base for autotest tables."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime column that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound values to aware UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "timestamps must be timezone aware"
            raise ValueError(msg)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Return aware UTC datetimes."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class PushRow(Base):
    """Append-only push intents."""

    __tablename__ = "pushes"
    __table_args__ = (Index("ix_pushes_commit", "commit_url", "deliv_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    commit_url: Mapped[str] = mapped_column(String(_URL_LENGTH))
    deliv_id: Mapped[str] = mapped_column(String(_ID_LENGTH))
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class CommentRow(Base):
    """Append-only pending feedback requests."""

    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_commit", "commit_url", "deliv_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    commit_url: Mapped[str] = mapped_column(String(_URL_LENGTH))
    deliv_id: Mapped[str | None] = mapped_column(String(_ID_LENGTH), default=None)
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class OutputRow(Base):
    """Test results, at most one per key."""

    __tablename__ = "outputs"
    __table_args__ = (
        UniqueConstraint("commit_url", "deliv_id", name="uq_outputs_commit_deliv"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    commit_url: Mapped[str] = mapped_column(String(_URL_LENGTH))
    deliv_id: Mapped[str] = mapped_column(String(_ID_LENGTH))
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    produced_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())


class FeedbackRow(Base):
    """Append-only feedback grants."""

    __tablename__ = "feedback_given"
    __table_args__ = (
        Index("ix_feedback_triple", "course_id", "deliv_id", "user_name", "timestamp"),
        Index("ix_feedback_commit_user", "commit_url", "user_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    course_id: Mapped[str] = mapped_column(String(_ID_LENGTH))
    deliv_id: Mapped[str] = mapped_column(String(_ID_LENGTH))
    user_name: Mapped[str] = mapped_column(String(255))
    commit_url: Mapped[str] = mapped_column(String(_URL_LENGTH))
    timestamp: Mapped[dt.datetime] = mapped_column(UTCDateTime())


class ResolutionRow(Base):
    """Settled deferred requests, at most one per request."""

    __tablename__ = "resolutions"
    __table_args__ = (
        UniqueConstraint(
            "commit_url",
            "deliv_id",
            "user_name",
            "requested_at",
            name="uq_resolutions_request",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    commit_url: Mapped[str] = mapped_column(String(_URL_LENGTH))
    deliv_id: Mapped[str] = mapped_column(String(_ID_LENGTH))
    user_name: Mapped[str] = mapped_column(String(255))
    requested_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)


_MODELS = (PushRow, CommentRow, OutputRow, FeedbackRow, ResolutionRow)


async def init_store_schema(engine: AsyncEngine) -> None:
    """Create the autotest tables if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _to_feedback(row: FeedbackRow) -> FeedbackGiven:
    return FeedbackGiven(
        course_id=row.course_id,
        deliv_id=row.deliv_id,
        user_name=row.user_name,
        commit_url=row.commit_url,
        timestamp=row.timestamp,
    )


class DatabaseResultStore:
    """Persist records through an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        instance: str,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Store the session factory and instance name.

        When ``engine`` is given the store owns it and disposes it in
        :meth:`aclose`.
        """
        self._session_factory = session_factory
        self._instance = instance
        self._engine = engine

    async def _add(self, operation: str, row: Base) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation(operation, exc) from exc

    async def _first_payload(
        self, operation: str, stmt: typ.Any  # noqa: ANN401
    ) -> dict[str, typ.Any] | None:
        try:
            async with self._session_factory() as session:
                return await session.scalar(stmt.limit(1))
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation(operation, exc) from exc

    async def save_push(self, info: ContainerInput) -> None:
        """Insert a push intent."""
        await self._add(
            "save_push",
            PushRow(
                commit_url=info.commit_url,
                deliv_id=info.deliv_id,
                payload=msgspec.to_builtins(info),
            ),
        )

    async def get_push_record(
        self, commit_url: str, deliv_id: str | None = None
    ) -> ContainerInput | None:
        """Return the first push intent for ``commit_url``."""
        stmt = select(PushRow.payload).where(PushRow.commit_url == commit_url)
        if deliv_id is not None:
            stmt = stmt.where(PushRow.deliv_id == deliv_id)
        stmt = stmt.order_by(PushRow.id)
        payload = await self._first_payload("get_push_record", stmt)
        return None if payload is None else msgspec.convert(payload, ContainerInput)

    async def save_comment(self, info: CommentEvent) -> None:
        """Insert a pending feedback request."""
        await self._add(
            "save_comment",
            CommentRow(
                commit_url=info.commit_url,
                deliv_id=info.deliv_id,
                payload=msgspec.to_builtins(info),
            ),
        )

    async def get_comment_record(
        self, commit_url: str, deliv_id: str
    ) -> CommentEvent | None:
        """Return the first feedback request for the key."""
        stmt = (
            select(CommentRow.payload)
            .where(CommentRow.commit_url == commit_url, CommentRow.deliv_id == deliv_id)
            .order_by(CommentRow.id)
        )
        payload = await self._first_payload("get_comment_record", stmt)
        return None if payload is None else msgspec.convert(payload, CommentEvent)

    async def get_comment_records(
        self, commit_url: str, deliv_id: str
    ) -> list[CommentEvent]:
        """Return every feedback request for the key in insertion order."""
        stmt = (
            select(CommentRow.payload)
            .where(CommentRow.commit_url == commit_url, CommentRow.deliv_id == deliv_id)
            .order_by(CommentRow.id)
        )
        try:
            async with self._session_factory() as session:
                payloads = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation("get_comment_records", exc) from exc
        return [msgspec.convert(p, CommentEvent) for p in payloads]

    async def save_request_resolution(self, resolution: RequestResolution) -> None:
        """Insert a resolution; the unique constraint rejects a second one."""
        row = ResolutionRow(
            commit_url=resolution.commit_url,
            deliv_id=resolution.deliv_id,
            user_name=resolution.user_name,
            requested_at=resolution.requested_at,
            payload=msgspec.to_builtins(resolution),
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except IntegrityError as exc:
            raise RequestAlreadyResolvedError(
                resolution.commit_url, resolution.deliv_id, resolution.user_name
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation(
                "save_request_resolution", exc
            ) from exc

    async def get_request_resolution(
        self, request: CommentEvent
    ) -> RequestResolution | None:
        """Return the resolution recorded for ``request``."""
        stmt = select(ResolutionRow.payload).where(
            ResolutionRow.commit_url == request.commit_url,
            ResolutionRow.deliv_id == request.deliv_id,
            ResolutionRow.user_name == request.user_name,
            ResolutionRow.requested_at == request.timestamp,
        )
        payload = await self._first_payload("get_request_resolution", stmt)
        if payload is None:
            return None
        return msgspec.convert(payload, RequestResolution)

    async def save_output_record(self, record: CommitRecord) -> None:
        """Insert a test result; the unique constraint rejects duplicates."""
        row = OutputRow(
            commit_url=record.commit_url,
            deliv_id=record.deliv_id,
            payload=msgspec.to_builtins(record),
            produced_at=record.produced_at,
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except IntegrityError as exc:
            raise DuplicateRecordError(record.commit_url, record.deliv_id) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation("save_output_record", exc) from exc

    async def get_output_record(
        self, commit_url: str, deliv_id: str
    ) -> CommitRecord | None:
        """Return the test result for the key."""
        stmt = select(OutputRow.payload).where(
            OutputRow.commit_url == commit_url, OutputRow.deliv_id == deliv_id
        )
        payload = await self._first_payload("get_output_record", stmt)
        return None if payload is None else msgspec.convert(payload, CommitRecord)

    async def save_feedback_given_record(self, record: FeedbackGiven) -> None:
        """Insert a feedback grant."""
        await self._add(
            "save_feedback_given_record",
            FeedbackRow(
                course_id=record.course_id,
                deliv_id=record.deliv_id,
                user_name=record.user_name,
                commit_url=record.commit_url,
                timestamp=record.timestamp,
            ),
        )

    async def _first_feedback(
        self, operation: str, stmt: typ.Any  # noqa: ANN401
    ) -> FeedbackGiven | None:
        try:
            async with self._session_factory() as session:
                row = await session.scalar(stmt.limit(1))
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation(operation, exc) from exc
        return None if row is None else _to_feedback(row)

    async def get_latest_feedback_given_record(
        self, course_id: str, deliv_id: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return the most recent grant for the triple."""
        stmt = (
            select(FeedbackRow)
            .where(
                FeedbackRow.course_id == course_id,
                FeedbackRow.deliv_id == deliv_id,
                FeedbackRow.user_name == user_name,
            )
            .order_by(FeedbackRow.timestamp.desc(), FeedbackRow.id.desc())
        )
        return await self._first_feedback("get_latest_feedback_given_record", stmt)

    async def get_feedback_given_record_for_commit(
        self, commit_url: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return a grant made to ``user_name`` for ``commit_url``."""
        stmt = (
            select(FeedbackRow)
            .where(
                FeedbackRow.commit_url == commit_url,
                FeedbackRow.user_name == user_name,
            )
            .order_by(FeedbackRow.id)
        )
        return await self._first_feedback("get_feedback_given_record_for_commit", stmt)

    async def get_all_data(self) -> StoreSnapshot:
        """Return every record. Debugging only."""
        log_warning(logger, "DatabaseResultStore.get_all_data() called; debugging only")
        try:
            async with self._session_factory() as session:
                outputs = (await session.scalars(select(OutputRow.payload))).all()
                comments = (await session.scalars(select(CommentRow.payload))).all()
                pushes = (await session.scalars(select(PushRow.payload))).all()
                feedback = (await session.scalars(select(FeedbackRow))).all()
                resolutions = (
                    await session.scalars(select(ResolutionRow.payload))
                ).all()
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation("get_all_data", exc) from exc
        return StoreSnapshot(
            records=[msgspec.convert(p, CommitRecord) for p in outputs],
            comments=[msgspec.convert(p, CommentEvent) for p in comments],
            pushes=[msgspec.convert(p, ContainerInput) for p in pushes],
            feedback=[_to_feedback(row) for row in feedback],
            resolutions=[msgspec.convert(p, RequestResolution) for p in resolutions],
        )

    async def clear_data(self) -> None:
        """Delete every row. Test instances only."""
        if self._instance != TEST_INSTANCE:
            raise ConfigurationError.clear_forbidden(
                "DatabaseResultStore", self._instance
            )
        try:
            async with self._session_factory() as session, session.begin():
                for model in _MODELS:
                    await session.execute(delete(model))
        except SQLAlchemyError as exc:
            raise PersistenceError.for_operation("clear_data", exc) from exc
        log_info(logger, "DatabaseResultStore cleared all tables")

    async def aclose(self) -> None:
        """Dispose the owned engine, if any."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
