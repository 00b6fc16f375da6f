"""ResultStore protocol for durable requests, results, grants and resolutions.

This module defines the port through which the orchestration core persists
its five collections. Adapters implement the protocol on top of JSON-lines
files (:class:`~autotest.store.filesystem.FileResultStore`) or a SQLAlchemy
database (:class:`~autotest.store.database.DatabaseResultStore`). Every
adapter raises :class:`~autotest.errors.PersistenceError` on I/O failure and
:class:`~autotest.errors.ConfigurationError` from ``clear_data`` unless the
instance is a test instance.

Usage
-----
>>> from autotest.store import FileResultStore, ResultStore
>>> isinstance(FileResultStore(Path("data"), instance="test"), ResultStore)
True

"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from autotest.models import (
        CommentEvent,
        CommitRecord,
        ContainerInput,
        FeedbackGiven,
        RequestResolution,
        StoreSnapshot,
    )


@typ.runtime_checkable
class ResultStore(typ.Protocol):
    """Protocol for the durable record of requests, results and grants."""

    async def save_push(self, info: ContainerInput) -> None:
        """Append a push intent.

        The container input is stored rather than the bare push because it
        carries the resolved course and deliverable needed to resume the job.
        """
        ...

    async def get_push_record(
        self, commit_url: str, deliv_id: str | None = None
    ) -> ContainerInput | None:
        """Return the first push intent for ``commit_url``.

        When ``deliv_id`` is given only intents for that deliverable match.
        """
        ...

    async def save_comment(self, info: CommentEvent) -> None:
        """Append a feedback request that is awaiting a test result."""
        ...

    async def get_comment_record(
        self, commit_url: str, deliv_id: str
    ) -> CommentEvent | None:
        """Return the first feedback request for the key."""
        ...

    async def get_comment_records(
        self, commit_url: str, deliv_id: str
    ) -> list[CommentEvent]:
        """Return every feedback request for the key in arrival order."""
        ...

    async def save_request_resolution(self, resolution: RequestResolution) -> None:
        """Settle a deferred feedback request.

        The check for an existing resolution and the write are atomic, so
        concurrent deliverers of the same request agree on a single winner.

        Raises
        ------
        RequestAlreadyResolvedError
            If the request already has a resolution.

        """
        ...

    async def get_request_resolution(
        self, request: CommentEvent
    ) -> RequestResolution | None:
        """Return the resolution of a deferred request, if it has one."""
        ...

    async def save_output_record(self, record: CommitRecord) -> None:
        """Store a test result.

        Raises
        ------
        DuplicateRecordError
            If a record already exists for ``(commit_url, deliv_id)``.

        """
        ...

    async def get_output_record(
        self, commit_url: str, deliv_id: str
    ) -> CommitRecord | None:
        """Return the test result for the key."""
        ...

    async def save_feedback_given_record(self, record: FeedbackGiven) -> None:
        """Append a feedback grant."""
        ...

    async def get_latest_feedback_given_record(
        self, course_id: str, deliv_id: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return the grant with the greatest timestamp for the triple."""
        ...

    async def get_feedback_given_record_for_commit(
        self, commit_url: str, user_name: str
    ) -> FeedbackGiven | None:
        """Return a grant made to ``user_name`` for ``commit_url``."""
        ...

    async def get_all_data(self) -> StoreSnapshot:
        """Return every record. Debugging only."""
        ...

    async def clear_data(self) -> None:
        """Delete every record.

        Raises
        ------
        ConfigurationError
            Unless the store belongs to a test instance.

        """
        ...

    async def aclose(self) -> None:
        """Release connections held by the store."""
        ...
