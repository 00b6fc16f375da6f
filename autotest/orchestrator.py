"""Answer feedback requests left as commit comments.

A request for a commit that already has a test result is answered at once,
subject to the per-user cooldown. A request for an untested commit is stored
as pending, a test is scheduled and a chain of re-check tasks polls for the
result until it arrives or the attempts run out. Results that arrive through
:meth:`CommentOrchestrator.on_test_result` deliver the pending request
immediately and cancel its re-check.

Every deferred request ends in exactly one ``RequestResolution``. Delivery and
the timeout notice both claim the request in the store first, so a result
that misses the timeout is never delivered, and two processes racing on the
same request publish once.

A ``FeedbackGiven`` record is written only after the publisher confirmed the
post, so a user is never charged quota for feedback they did not receive.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import typing as typ
import uuid

import msgspec

from autotest.common.time import utcnow
from autotest.errors import PersistenceError, RequestAlreadyResolvedError
from autotest.markdown import (
    render_denial_markdown,
    render_feedback_markdown,
    render_timeout_markdown,
    render_usage_markdown,
)
from autotest.models import (
    FeedbackGiven,
    PushEvent,
    RequestResolution,
    RequestState,
    validate_comment_event,
)
from autotest.observability import AutotestEventLogger, AutotestEventType

if typ.TYPE_CHECKING:
    from autotest.config import AutotestConfig
    from autotest.courses import DeliverableResolver
    from autotest.dispatcher import TestDispatcher
    from autotest.locks import KeyedLock
    from autotest.models import CommentEvent, CommitRecord
    from autotest.publisher import FeedbackPublisher
    from autotest.quota import QuotaGuard
    from autotest.scheduler import TaskScheduler
    from autotest.store import ResultStore

type _PendingKey = tuple[str, str, str]


class CommentStatus(enum.StrEnum):
    """Terminal or interim status of a feedback request."""

    POSTED = "posted"
    DEFERRED = "deferred"
    DENIED = "denied"
    ERROR = "error"


class CommentReason(enum.StrEnum):
    """Why a request ended in its status."""

    FEEDBACK_POSTED = "feedback_posted"
    AWAITING_RESULT = "awaiting_result"
    COOLDOWN = "cooldown"
    USAGE = "usage"
    PUBLISH_FAILED = "publish_failed"


@dc.dataclass(frozen=True, slots=True)
class CommentOutcome:
    """What happened to a feedback request.

    Attributes
    ----------
    status
        Posted, deferred, denied or error.
    reason
        Detail for the status.
    retry_after
        Remaining cooldown for denied requests.
    task_name
        Re-check task registered for deferred requests.
    markdown
        The notice body for denied requests, whether or not it was posted.

    """

    status: CommentStatus
    reason: CommentReason
    retry_after: dt.timedelta | None = None
    task_name: str | None = None
    markdown: str | None = None


@dc.dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    """Re-check and denial behaviour."""

    recheck_interval: dt.timedelta = dt.timedelta(seconds=60)
    max_rechecks: int = 10
    post_denials: bool = True

    @classmethod
    def from_config(cls, config: AutotestConfig) -> OrchestratorSettings:
        """Take the settings from the instance configuration."""
        return cls(
            recheck_interval=config.recheck_interval,
            max_rechecks=config.max_rechecks,
            post_denials=config.post_denials,
        )


@dc.dataclass(frozen=True, slots=True)
class OrchestratorDependencies:
    """Collaborators of :class:`CommentOrchestrator`.

    ``locks`` must be the instance the dispatcher uses so comment handling,
    pushes and re-checks for one key serialize with each other.
    """

    store: ResultStore
    publisher: FeedbackPublisher
    scheduler: TaskScheduler
    dispatcher: TestDispatcher
    quota: QuotaGuard
    resolver: DeliverableResolver
    locks: KeyedLock


@dc.dataclass(frozen=True, slots=True)
class _Recheck:
    event: CommentEvent
    chain: str
    attempt: int

    @property
    def task_name(self) -> str:
        return (
            f"recheck:{self.event.commit_url}:{self.event.deliv_id}:"
            f"{self.event.user_name}:{self.chain}:{self.attempt}"
        )


def _resolved(event: CommentEvent) -> tuple[str, str]:
    # only resolved events, carrying both ids, reach the private helpers
    return typ.cast("str", event.course_id), typ.cast("str", event.deliv_id)


class CommentOrchestrator:
    """Turn comment events into posted, deferred, denied or failed requests."""

    def __init__(
        self,
        dependencies: OrchestratorDependencies,
        *,
        settings: OrchestratorSettings | None = None,
        clock: typ.Callable[[], dt.datetime] = utcnow,
        event_logger: AutotestEventLogger | None = None,
    ) -> None:
        """Wire the orchestrator to its collaborators."""
        self._deps = dependencies
        self._settings = settings or OrchestratorSettings()
        self._clock = clock
        self._events = event_logger or AutotestEventLogger()
        self._pending: dict[_PendingKey, str] = {}

    def pending_task(
        self, commit_url: str, deliv_id: str, user_name: str
    ) -> str | None:
        """Return the re-check task currently waiting for a request."""
        return self._pending.get((commit_url, deliv_id, user_name))

    async def on_comment(self, event: CommentEvent) -> CommentOutcome:
        """Handle a feedback request.

        Raises
        ------
        EventValidationError
            Before any write when the event is malformed.
        PersistenceError
            If the store could not be read or written.
        DispatchError
            If a test for an untested commit could not be enqueued.

        """
        validate_comment_event(event)
        target = self._deps.resolver.comment_target(event)
        if target is None:
            await self._post_notice(
                event.commit_url, render_usage_markdown(user_name=event.user_name)
            )
            self._events.log_comment(
                AutotestEventType.COMMENT_FAILED,
                commit_url=event.commit_url,
                user_name=event.user_name,
                deliv_id=event.deliv_id,
                detail="reason=usage",
            )
            return CommentOutcome(
                status=CommentStatus.ERROR, reason=CommentReason.USAGE
            )

        resolved = msgspec.structs.replace(
            event, course_id=target.course_id, deliv_id=target.deliv_id
        )
        async with self._deps.locks.hold((event.commit_url, target.deliv_id)):
            record = await self._deps.store.get_output_record(
                event.commit_url, target.deliv_id
            )
            if record is not None:
                return await self._deliver(resolved, record)
            return await self._defer(resolved)

    async def on_test_result(self, record: CommitRecord) -> CommentOutcome | None:
        """Store a finished result and answer the requests waiting on it.

        Every open request for the key is settled. Requests that already
        timed out or were answered elsewhere are left alone.

        Returns
        -------
        CommentOutcome | None
            The delivery outcome of the earliest open request, or ``None``
            when the result was a duplicate, no request was open or the
            requester already has feedback for the commit.

        """
        key = (record.commit_url, record.deliv_id)
        async with self._deps.locks.hold(key):
            if not await self._deps.dispatcher.record_result_locked(record):
                return None
            first: CommentOutcome | None = None
            for comment in await self._deps.store.get_comment_records(*key):
                if await self._deps.store.get_request_resolution(comment) is not None:
                    continue
                task_name = self._pending.pop(
                    (record.commit_url, record.deliv_id, comment.user_name), None
                )
                if task_name is not None:
                    self._deps.scheduler.cancel_task(task_name)
                outcome = await self._answer(comment, record)
                if first is None:
                    first = outcome
            return first

    async def _claim(self, event: CommentEvent, state: RequestState) -> bool:
        resolution = RequestResolution.for_request(event, state, self._clock())
        try:
            await self._deps.store.save_request_resolution(resolution)
        except RequestAlreadyResolvedError:
            return False
        return True

    async def _answer(
        self, event: CommentEvent, record: CommitRecord
    ) -> CommentOutcome | None:
        # deferred requests are delivered once, by whoever claims them first
        if not await self._claim(event, RequestState.ANSWERED):
            return None
        if await self._already_given(event):
            return None
        return await self._deliver(event, record)

    async def _already_given(self, event: CommentEvent) -> bool:
        given = await self._deps.store.get_feedback_given_record_for_commit(
            event.commit_url, event.user_name
        )
        return given is not None and given.deliv_id == event.deliv_id

    async def _post_notice(self, target_url: str, markdown: str) -> bool:
        posted = await self._deps.publisher.post_markdown(target_url, markdown)
        if not posted:
            self._events.log_comment(
                AutotestEventType.COMMENT_FAILED,
                commit_url=target_url,
                user_name="-",
                deliv_id=None,
                detail="reason=notice_not_posted",
            )
        return posted

    async def _deliver(
        self, event: CommentEvent, record: CommitRecord
    ) -> CommentOutcome:
        course_id, deliv_id = _resolved(event)
        now = self._clock()
        decision = await self._deps.quota.check_quota(
            course_id, deliv_id, event.user_name, now
        )
        if not decision.allowed:
            retry_after = typ.cast("dt.timedelta", decision.retry_after)
            body = render_denial_markdown(
                user_name=event.user_name, deliv_id=deliv_id, retry_after=retry_after
            )
            if self._settings.post_denials:
                await self._post_notice(event.commit_url, body)
            self._events.log_comment(
                AutotestEventType.COMMENT_DENIED,
                commit_url=event.commit_url,
                user_name=event.user_name,
                deliv_id=deliv_id,
                detail=f"retry_after_seconds={retry_after.total_seconds():.0f}",
            )
            return CommentOutcome(
                status=CommentStatus.DENIED,
                reason=CommentReason.COOLDOWN,
                retry_after=retry_after,
                markdown=body,
            )

        body = render_feedback_markdown(record, user_name=event.user_name)
        if not await self._deps.publisher.post_markdown(event.commit_url, body):
            self._events.log_comment(
                AutotestEventType.COMMENT_FAILED,
                commit_url=event.commit_url,
                user_name=event.user_name,
                deliv_id=deliv_id,
                detail="reason=publish_failed",
            )
            return CommentOutcome(
                status=CommentStatus.ERROR, reason=CommentReason.PUBLISH_FAILED
            )

        await self._deps.store.save_feedback_given_record(
            FeedbackGiven(
                course_id=course_id,
                deliv_id=deliv_id,
                user_name=event.user_name,
                commit_url=event.commit_url,
                timestamp=now,
            )
        )
        self._events.log_comment(
            AutotestEventType.COMMENT_POSTED,
            commit_url=event.commit_url,
            user_name=event.user_name,
            deliv_id=deliv_id,
        )
        return CommentOutcome(
            status=CommentStatus.POSTED, reason=CommentReason.FEEDBACK_POSTED
        )

    async def _push_for(self, event: CommentEvent) -> PushEvent:
        intent = await self._deps.store.get_push_record(event.commit_url)
        if intent is not None:
            return intent.push
        return PushEvent(
            repo=event.repo,
            commit=event.commit,
            commit_url=event.commit_url,
            project_url=event.project_url,
            branch="",
            timestamp=event.timestamp,
        )

    async def _defer(self, event: CommentEvent) -> CommentOutcome:
        course_id, deliv_id = _resolved(event)
        pending_key = (event.commit_url, deliv_id, event.user_name)
        existing = self._pending.get(pending_key)
        if existing is not None:
            return CommentOutcome(
                status=CommentStatus.DEFERRED,
                reason=CommentReason.AWAITING_RESULT,
                task_name=existing,
            )

        push = await self._push_for(event)
        await self._deps.dispatcher.schedule_locked(push, course_id, deliv_id)
        # a pending request exists only once its test is enqueued
        await self._deps.store.save_comment(event)
        task_name = self._register_recheck(
            _Recheck(event=event, chain=uuid.uuid4().hex[:12], attempt=1)
        )
        self._events.log_comment(
            AutotestEventType.COMMENT_DEFERRED,
            commit_url=event.commit_url,
            user_name=event.user_name,
            deliv_id=deliv_id,
            detail=f"task={task_name}",
        )
        return CommentOutcome(
            status=CommentStatus.DEFERRED,
            reason=CommentReason.AWAITING_RESULT,
            task_name=task_name,
        )

    def _register_recheck(self, recheck: _Recheck) -> str | None:
        event = recheck.event
        _, deliv_id = _resolved(event)
        pending_key = (event.commit_url, deliv_id, event.user_name)
        fire_time = self._clock() + self._settings.recheck_interval
        name = recheck.task_name
        scheduler = self._deps.scheduler
        if not scheduler.register_task(name, fire_time, self._recheck, recheck):
            self._pending.pop(pending_key, None)
            return None
        self._pending[pending_key] = name
        return name

    async def _recheck(self, recheck: _Recheck) -> None:
        event = recheck.event
        _, deliv_id = _resolved(event)
        pending_key = (event.commit_url, deliv_id, event.user_name)
        async with self._deps.locks.hold((event.commit_url, deliv_id)):
            if self._pending.get(pending_key) != recheck.task_name:
                # answered by on_test_result or superseded
                return
            try:
                await self._recheck_locked(recheck)
            finally:
                # a registered successor has replaced the entry by now
                if self._pending.get(pending_key) == recheck.task_name:
                    del self._pending[pending_key]

    async def _recheck_locked(self, recheck: _Recheck) -> None:
        event = recheck.event
        _, deliv_id = _resolved(event)
        try:
            record = await self._deps.store.get_output_record(
                event.commit_url, deliv_id
            )
            if record is not None:
                await self._answer(event, record)
                return
        except PersistenceError as exc:
            # an unusable store counts as a miss; a repeated answer loses its claim
            self._log_recheck_failure(recheck, exc)
        if recheck.attempt >= self._settings.max_rechecks:
            await self._time_out(recheck)
            return
        self._register_recheck(dc.replace(recheck, attempt=recheck.attempt + 1))

    async def _time_out(self, recheck: _Recheck) -> None:
        event = recheck.event
        _, deliv_id = _resolved(event)
        try:
            if not await self._claim(event, RequestState.TIMED_OUT):
                return
        except PersistenceError as exc:
            # the notice is still owed when the claim cannot be stored
            self._log_recheck_failure(recheck, exc)
        notice = render_timeout_markdown(user_name=event.user_name, deliv_id=deliv_id)
        await self._post_notice(event.commit_url, notice)
        self._events.log_comment(
            AutotestEventType.COMMENT_TIMED_OUT,
            commit_url=event.commit_url,
            user_name=event.user_name,
            deliv_id=deliv_id,
            detail=f"attempts={recheck.attempt}",
        )

    def _log_recheck_failure(self, recheck: _Recheck, error: Exception) -> None:
        self._events.log_comment(
            AutotestEventType.COMMENT_RECHECK_FAILED,
            commit_url=recheck.event.commit_url,
            user_name=recheck.event.user_name,
            deliv_id=recheck.event.deliv_id,
            detail=f"attempt={recheck.attempt} error={error}",
        )


__all__ = [
    "CommentOrchestrator",
    "CommentOutcome",
    "CommentReason",
    "CommentStatus",
    "OrchestratorDependencies",
    "OrchestratorSettings",
]
