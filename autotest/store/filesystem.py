r"""JSON-lines adapter for the ResultStore protocol.

Each collection is one append-only file under ``base_path``::

    {base_path}/pushes.jsonl
    {base_path}/comments.jsonl
    {base_path}/outputs.jsonl
    {base_path}/feedback.jsonl
    {base_path}/resolutions.jsonl

A write is a single ``O_APPEND`` write of one encoded line, so concurrent
writers never lose each other's records. Writes within the process are also
serialized by an ``asyncio.Lock``. Outputs and resolutions must be unique, so
their check and append run under an exclusive ``flock`` on the collection
file, which also excludes writers in other processes.
"""

from __future__ import annotations

import asyncio
import fcntl
import os
import typing as typ

import msgspec

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
    from pathlib import Path

logger = get_logger(__name__)

_COLLECTIONS: dict[str, type[msgspec.Struct]] = {
    "pushes": ContainerInput,
    "comments": CommentEvent,
    "outputs": CommitRecord,
    "feedback": FeedbackGiven,
    "resolutions": RequestResolution,
}

_encoder = msgspec.json.Encoder()


class FileResultStore:
    """Persist records as JSON lines, one file per collection.

    Parameters
    ----------
    base_path
        Directory holding the collection files. Created on first write.
    instance
        Instance name; ``clear_data`` is only permitted for ``"test"``.

    """

    def __init__(self, base_path: Path, *, instance: str) -> None:
        """Bind the store to a directory."""
        self._base_path = base_path
        self._instance = instance
        self._write_lock = asyncio.Lock()
        self._decoders = {
            name: msgspec.json.Decoder(type=record_type)
            for name, record_type in _COLLECTIONS.items()
        }

    def _path(self, collection: str) -> Path:
        return self._base_path / f"{collection}.jsonl"

    def _append_sync(self, collection: str, line: bytes) -> None:
        self._base_path.mkdir(parents=True, exist_ok=True)
        fd = os.open(
            self._path(collection), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644
        )
        try:
            os.write(fd, line)
        finally:
            os.close(fd)

    def _read_sync(self, collection: str) -> list[typ.Any]:
        path = self._path(collection)
        if not path.exists():
            return []
        decoder = self._decoders[collection]
        records: list[typ.Any] = []
        with path.open("rb") as handle:
            for lineno, raw in enumerate(handle, start=1):
                if not raw.strip():
                    continue
                try:
                    records.append(decoder.decode(raw))
                except msgspec.DecodeError as exc:
                    # a torn final line from a crashed writer is skipped
                    log_warning(
                        logger, "skipping corrupt line %d in %s: %s", lineno, path, exc
                    )
        return records

    async def _append(self, collection: str, record: msgspec.Struct) -> None:
        line = _encoder.encode(record) + b"\n"
        try:
            await asyncio.to_thread(self._append_sync, collection, line)
        except OSError as exc:
            raise PersistenceError.for_operation(f"append {collection}", exc) from exc

    def _append_unique_sync(
        self,
        collection: str,
        line: bytes,
        conflicts: typ.Callable[[typ.Any], bool],
    ) -> bool:
        self._base_path.mkdir(parents=True, exist_ok=True)
        fd = os.open(
            self._path(collection), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644
        )
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            if any(conflicts(record) for record in self._read_sync(collection)):
                return False
            os.write(fd, line)
            return True
        finally:
            # closing the descriptor releases the flock
            os.close(fd)

    async def _append_unique(
        self,
        collection: str,
        record: msgspec.Struct,
        conflicts: typ.Callable[[typ.Any], bool],
    ) -> bool:
        line = _encoder.encode(record) + b"\n"
        try:
            return await asyncio.to_thread(
                self._append_unique_sync, collection, line, conflicts
            )
        except OSError as exc:
            raise PersistenceError.for_operation(f"append {collection}", exc) from exc

    async def _read(self, collection: str) -> list[typ.Any]:
        try:
            return await asyncio.to_thread(self._read_sync, collection)
        except OSError as exc:
            raise PersistenceError.for_operation(f"read {collection}", exc) from exc

    async def save_push(self, info: ContainerInput) -> None:
        """Append a push intent."""
        async with self._write_lock:
            await self._append("pushes", info)

    async def get_push_record(
        self, commit_url: str, deliv_id: str | None = None
    ) -> ContainerInput | None:
        """Return the first push intent for ``commit_url``."""
        records: list[ContainerInput] = await self._read("pushes")
        return next(
            (
                r
                for r in records
                if r.commit_url == commit_url
                and (deliv_id is None or r.deliv_id == deliv_id)
            ),
            None,
        )

    async def save_comment(self, info: CommentEvent) -> None:
        """Append a pending feedback request."""
        async with self._write_lock:
            await self._append("comments", info)

    async def get_comment_record(
        self, commit_url: str, deliv_id: str
    ) -> CommentEvent | None:
        """Return the first feedback request for the key."""
        records: list[CommentEvent] = await self._read("comments")
        return next(
            (
                r
                for r in records
                if r.commit_url == commit_url and r.deliv_id == deliv_id
            ),
            None,
        )

    async def get_comment_records(
        self, commit_url: str, deliv_id: str
    ) -> list[CommentEvent]:
        """Return every feedback request for the key in file order."""
        records: list[CommentEvent] = await self._read("comments")
        return [
            r for r in records if r.commit_url == commit_url and r.deliv_id == deliv_id
        ]

    async def save_request_resolution(self, resolution: RequestResolution) -> None:
        """Append a resolution unless the request already has one."""

        def _same_request(existing: RequestResolution) -> bool:
            return (
                existing.commit_url == resolution.commit_url
                and existing.deliv_id == resolution.deliv_id
                and existing.user_name == resolution.user_name
                and existing.requested_at == resolution.requested_at
            )

        async with self._write_lock:
            appended = await self._append_unique(
                "resolutions", resolution, _same_request
            )
        if not appended:
            raise RequestAlreadyResolvedError(
                resolution.commit_url, resolution.deliv_id, resolution.user_name
            )

    async def get_request_resolution(
        self, request: CommentEvent
    ) -> RequestResolution | None:
        """Return the resolution recorded for ``request``."""
        records: list[RequestResolution] = await self._read("resolutions")
        return next(
            (
                r
                for r in records
                if r.commit_url == request.commit_url
                and r.deliv_id == request.deliv_id
                and r.user_name == request.user_name
                and r.requested_at == request.timestamp
            ),
            None,
        )

    async def save_output_record(self, record: CommitRecord) -> None:
        """Append a test result unless the key already has one."""

        def _same_key(existing: CommitRecord) -> bool:
            return (
                existing.commit_url == record.commit_url
                and existing.deliv_id == record.deliv_id
            )

        async with self._write_lock:
            appended = await self._append_unique("outputs", record, _same_key)
        if not appended:
            raise DuplicateRecordError(record.commit_url, record.deliv_id)

    async def get_output_record(
        self, commit_url: str, deliv_id: str
    ) -> CommitRecord | None:
        """Return the test result for the key."""
        records: list[CommitRecord] = await self._read("outputs")
        return next(
            (
                r
                for r in records
                if r.commit_url == commit_url and r.deliv_id == deliv_id
            ),
            None,
        )

    async def save_feedback_given_record(self, record: FeedbackGiven) -> None:
        """Append a feedback grant."""
        async with self._write_lock:
            await self._append("feedback", record)

    async def get_latest_feedback_given_record(
        self, course_id: str, deliv_id: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return the most recent grant for the triple."""
        records: list[FeedbackGiven] = await self._read("feedback")
        matches = [
            r
            for r in records
            if r.course_id == course_id
            and r.deliv_id == deliv_id
            and r.user_name == user_name
        ]
        return max(matches, key=lambda r: r.timestamp, default=None)

    async def get_feedback_given_record_for_commit(
        self, commit_url: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return a grant made to ``user_name`` for ``commit_url``."""
        records: list[FeedbackGiven] = await self._read("feedback")
        return next(
            (
                r
                for r in records
                if r.commit_url == commit_url and r.user_name == user_name
            ),
            None,
        )

    async def get_all_data(self) -> StoreSnapshot:
        """Return every record. Debugging only."""
        log_warning(logger, "FileResultStore.get_all_data() called; debugging only")
        return StoreSnapshot(
            records=await self._read("outputs"),
            comments=await self._read("comments"),
            pushes=await self._read("pushes"),
            feedback=await self._read("feedback"),
            resolutions=await self._read("resolutions"),
        )

    async def clear_data(self) -> None:
        """Remove every collection file. Test instances only."""
        if self._instance != TEST_INSTANCE:
            raise ConfigurationError.clear_forbidden("FileResultStore", self._instance)

        def _remove() -> None:
            for collection in _COLLECTIONS:
                self._path(collection).unlink(missing_ok=True)

        async with self._write_lock:
            try:
                await asyncio.to_thread(_remove)
            except OSError as exc:
                raise PersistenceError.for_operation("clear_data", exc) from exc
        log_info(logger, "FileResultStore cleared %s", self._base_path)

    async def aclose(self) -> None:
        """Nothing to release; files are opened per operation."""
