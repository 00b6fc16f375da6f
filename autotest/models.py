"""Typed records exchanged between the orchestration components.

Every record is an immutable ``msgspec.Struct`` so the same types serve as the
in-memory model, the JSON-lines encoding of the file store and the request
body schema of the HTTP surface.
"""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

import msgspec

from autotest.errors import EventValidationError


class PushEvent(msgspec.Struct, frozen=True, kw_only=True):
    """Notification that commits were pushed to a repository.

    Attributes
    ----------
    repo
        Repository name.
    commit
        Head commit SHA.
    commit_url
        Web URL of the head commit; identifies the push within a deliverable.
    project_url
        Web URL of the repository.
    branch
        Branch the push targeted.
    timestamp
        Time the push was received.

    """

    repo: str
    commit: str
    commit_url: str
    project_url: str
    branch: str
    timestamp: dt.datetime


class CommentEvent(msgspec.Struct, frozen=True, kw_only=True):
    """A feedback request left as a comment on a commit."""

    repo: str
    commit: str
    commit_url: str
    project_url: str
    user_name: str
    timestamp: dt.datetime
    deliv_id: str | None = None
    course_id: str | None = None


class ContainerInput(msgspec.Struct, frozen=True, kw_only=True):
    """Job handed to the container runner and persisted as push intent."""

    push: PushEvent
    course_id: str
    deliv_id: str
    enqueued_at: dt.datetime

    @property
    def commit_url(self) -> str:
        """Return the commit URL of the underlying push."""
        return self.push.commit_url


class TestOutput(msgspec.Struct, frozen=True, kw_only=True):
    """Result payload produced by the container runner."""

    __test__ = False

    feedback: str
    score: float | None = None
    state: str = "success"


class CommitRecord(msgspec.Struct, frozen=True, kw_only=True):
    """Stored result of testing one commit against one deliverable."""

    commit_url: str
    deliv_id: str
    course_id: str
    commit: str
    output: TestOutput
    produced_at: dt.datetime


class FeedbackGiven(msgspec.Struct, frozen=True, kw_only=True):
    """Record that a user actually received a feedback post."""

    course_id: str
    deliv_id: str
    user_name: str
    commit_url: str
    timestamp: dt.datetime


class RequestState(enum.StrEnum):
    """Terminal state of a deferred feedback request."""

    ANSWERED = "answered"
    TIMED_OUT = "timed_out"


class RequestResolution(msgspec.Struct, frozen=True, kw_only=True):
    """Claim that settles one deferred feedback request.

    A request is identified by its key, its requester and the time the
    comment was made. At most one resolution exists per request; whoever
    stores it first delivers the answer or the timeout notice.
    """

    commit_url: str
    deliv_id: str
    user_name: str
    requested_at: dt.datetime
    state: RequestState
    resolved_at: dt.datetime

    @classmethod
    def for_request(
        cls, event: CommentEvent, state: RequestState, resolved_at: dt.datetime
    ) -> RequestResolution:
        """Return the resolution of ``event``, which must carry a deliverable."""
        return cls(
            commit_url=event.commit_url,
            deliv_id=typ.cast("str", event.deliv_id),
            user_name=event.user_name,
            requested_at=event.timestamp,
            state=state,
            resolved_at=resolved_at,
        )


class StoreSnapshot(msgspec.Struct, frozen=True, kw_only=True):
    """Debug dump of every collection in a Result Store."""

    records: list[CommitRecord] = msgspec.field(default_factory=list)
    comments: list[CommentEvent] = msgspec.field(default_factory=list)
    pushes: list[ContainerInput] = msgspec.field(default_factory=list)
    feedback: list[FeedbackGiven] = msgspec.field(default_factory=list)
    resolutions: list[RequestResolution] = msgspec.field(default_factory=list)


def _require_text(value: str, field: str) -> None:
    if not value or not value.strip():
        raise EventValidationError.missing(field)


def _require_aware(value: dt.datetime, field: str) -> None:
    if value.tzinfo is None:
        raise EventValidationError.naive_timestamp(field)


def _require_web_url(value: str, field: str) -> None:
    _require_text(value, field)
    if not value.startswith(("https://", "http://")):
        raise EventValidationError("must be an http(s) URL", field=field)


def validate_push_event(event: PushEvent) -> PushEvent:
    """Return ``event`` after checking the fields the dispatcher consumes.

    Raises
    ------
    EventValidationError
        If a required field is empty, a URL is malformed or the timestamp
        is naive.

    """
    _require_text(event.repo, "repo")
    _require_text(event.commit, "commit")
    _require_web_url(event.commit_url, "commit_url")
    _require_web_url(event.project_url, "project_url")
    _require_aware(event.timestamp, "timestamp")
    return event


def validate_comment_event(event: CommentEvent) -> CommentEvent:
    """Return ``event`` after checking the fields the orchestrator consumes."""
    _require_text(event.repo, "repo")
    _require_text(event.commit, "commit")
    _require_web_url(event.commit_url, "commit_url")
    _require_web_url(event.project_url, "project_url")
    _require_text(event.user_name, "user_name")
    _require_aware(event.timestamp, "timestamp")
    return event


EventT = typ.TypeVar("EventT", PushEvent, CommentEvent)


def decode_event(raw: bytes, event_type: type[EventT]) -> EventT:
    """Decode a JSON body into ``event_type``.

    Raises
    ------
    EventValidationError
        If the body does not match the event schema.

    """
    try:
        return msgspec.json.decode(raw, type=event_type)
    except msgspec.ValidationError as exc:
        raise EventValidationError(str(exc)) from exc
    except msgspec.DecodeError as exc:
        raise EventValidationError(f"malformed JSON: {exc}") from exc


__all__ = [
    "CommentEvent",
    "CommitRecord",
    "ContainerInput",
    "FeedbackGiven",
    "PushEvent",
    "RequestResolution",
    "RequestState",
    "StoreSnapshot",
    "TestOutput",
    "decode_event",
    "validate_comment_event",
    "validate_push_event",
]
