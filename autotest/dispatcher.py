"""Turn pushes into de-duplicated test jobs and ingest finished results.

For every deliverable a push resolves to, ``TestDispatcher`` runs a
check-then-act sequence under the key lock for ``(commit_url, deliv_id)``:
a stored result means the commit is never retested, a job this process has
enqueued within the in-flight window is not enqueued twice, and otherwise
the push intent is persisted before the job is enqueued so no job exists
without a durable record. A job that outlives the in-flight window without a
result is presumed lost and is enqueued again by the next request.

Methods with a ``_locked`` suffix assume the caller already holds the key
lock; ``asyncio.Lock`` is not reentrant, so the orchestrator calls those
from inside its own critical section.

Usage
-----
>>> dispatcher = TestDispatcher(
...     store, queue, resolver, locks=KeyedLock(), event_logger=AutotestEventLogger()
... )
>>> outcome = await dispatcher.on_push(push_event)

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import typing as typ

from autotest.common.time import utcnow
from autotest.errors import DuplicateRecordError
from autotest.locks import KeyedLock
from autotest.models import ContainerInput, validate_push_event
from autotest.observability import AutotestEventLogger

if typ.TYPE_CHECKING:
    from autotest.courses import DeliverableResolver
    from autotest.locks import LockKey
    from autotest.models import CommitRecord, PushEvent
    from autotest.queue import JobQueue
    from autotest.store import ResultStore

# the default re-check window: ten attempts a minute apart
_DEFAULT_IN_FLIGHT_TTL = dt.timedelta(minutes=10)


class DispatchStatus(enum.StrEnum):
    """Result of scheduling one (commit, deliverable) key."""

    QUEUED = "queued"
    ALREADY_TESTED = "already_tested"
    ALREADY_QUEUED = "already_queued"


@dc.dataclass(frozen=True, slots=True)
class DispatchResult:
    """Scheduling result for one deliverable of a push."""

    course_id: str
    deliv_id: str
    status: DispatchStatus


@dc.dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """Per-deliverable results for one push.

    An empty ``results`` tuple means the repository routes to no
    deliverable that is tested on push.
    """

    commit_url: str
    results: tuple[DispatchResult, ...] = ()

    @property
    def queued(self) -> list[str]:
        """Return the deliverables a job was enqueued for."""
        return [r.deliv_id for r in self.results if r.status is DispatchStatus.QUEUED]


class TestDispatcher:
    """Schedule container jobs for pushes, at most one result per key."""

    __test__ = False

    def __init__(
        self,
        store: ResultStore,
        queue: JobQueue,
        resolver: DeliverableResolver,
        *,
        locks: KeyedLock | None = None,
        clock: typ.Callable[[], dt.datetime] = utcnow,
        event_logger: AutotestEventLogger | None = None,
        in_flight_ttl: dt.timedelta = _DEFAULT_IN_FLIGHT_TTL,
    ) -> None:
        """Wire the dispatcher to its collaborators.

        Parameters
        ----------
        store
            Durable record of intents and results.
        queue
            Destination for container jobs.
        resolver
            Maps pushes to deliverables.
        locks
            Key locks shared with the comment orchestrator.
        clock
            Returns the current aware time.
        event_logger
            Destination for ``autotest.push.*`` events.
        in_flight_ttl
            How long an enqueued job without a result blocks re-enqueueing.

        """
        self._store = store
        self._queue = queue
        self._resolver = resolver
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._events = event_logger or AutotestEventLogger()
        self._in_flight_ttl = in_flight_ttl
        self._in_flight: dict[LockKey, dt.datetime] = {}

    @property
    def locks(self) -> KeyedLock:
        """Return the key locks guarding dispatcher state."""
        return self._locks

    def is_in_flight(self, commit_url: str, deliv_id: str) -> bool:
        """Return whether a job for the key is enqueued without a result."""
        enqueued_at = self._in_flight.get((commit_url, deliv_id))
        if enqueued_at is None:
            return False
        return self._clock() - enqueued_at < self._in_flight_ttl

    async def on_push(self, event: PushEvent) -> DispatchOutcome:
        """Schedule tests for every deliverable ``event`` resolves to.

        Raises
        ------
        EventValidationError
            Before any write when the event is malformed.
        PersistenceError
            If the push intent could not be stored.
        DispatchError
            If the job could not be enqueued.

        """
        validate_push_event(event)
        targets = self._resolver.push_targets(event)
        if not targets:
            self._events.log_push_unrouted(repo=event.repo, commit_url=event.commit_url)
            return DispatchOutcome(commit_url=event.commit_url)

        results: list[DispatchResult] = []
        for target in targets:
            status = await self.schedule(event, target.course_id, target.deliv_id)
            results.append(
                DispatchResult(
                    course_id=target.course_id, deliv_id=target.deliv_id, status=status
                )
            )
        return DispatchOutcome(commit_url=event.commit_url, results=tuple(results))

    async def schedule(
        self, push: PushEvent, course_id: str, deliv_id: str
    ) -> DispatchStatus:
        """Schedule a test of ``push`` for one deliverable."""
        async with self._locks.hold((push.commit_url, deliv_id)):
            return await self.schedule_locked(push, course_id, deliv_id)

    async def schedule_locked(
        self, push: PushEvent, course_id: str, deliv_id: str
    ) -> DispatchStatus:
        """Schedule a test while the caller holds the key lock."""
        key = (push.commit_url, deliv_id)
        if await self._store.get_output_record(push.commit_url, deliv_id) is not None:
            self._events.log_push_skipped(
                commit_url=push.commit_url, deliv_id=deliv_id, reason="already tested"
            )
            self._in_flight.pop(key, None)
            return DispatchStatus.ALREADY_TESTED
        if self.is_in_flight(*key):
            self._events.log_push_skipped(
                commit_url=push.commit_url, deliv_id=deliv_id, reason="already queued"
            )
            return DispatchStatus.ALREADY_QUEUED
        if key in self._in_flight:
            self._events.log_push_requeued(
                commit_url=push.commit_url,
                deliv_id=deliv_id,
                enqueued_at=self._in_flight.pop(key),
            )

        job = ContainerInput(
            push=push, course_id=course_id, deliv_id=deliv_id, enqueued_at=self._clock()
        )
        await self._store.save_push(job)
        await self._queue.enqueue(job)
        self._in_flight[key] = job.enqueued_at
        self._events.log_push_queued(commit_url=push.commit_url, deliv_id=deliv_id)
        return DispatchStatus.QUEUED

    async def record_result(self, record: CommitRecord) -> bool:
        """Store ``record`` unless the key already has a result."""
        async with self._locks.hold((record.commit_url, record.deliv_id)):
            return await self.record_result_locked(record)

    async def record_result_locked(self, record: CommitRecord) -> bool:
        """Store ``record`` while the caller holds the key lock.

        Returns
        -------
        bool
            ``False`` when a result already existed; nothing is written.

        """
        key = (record.commit_url, record.deliv_id)
        self._in_flight.pop(key, None)
        existing = await self._store.get_output_record(*key)
        if existing is not None:
            self._events.log_result_duplicate(
                commit_url=record.commit_url, deliv_id=record.deliv_id
            )
            return False
        try:
            await self._store.save_output_record(record)
        except DuplicateRecordError:
            # another process stored a result between the read and the write
            self._events.log_result_duplicate(
                commit_url=record.commit_url, deliv_id=record.deliv_id
            )
            return False
        self._events.log_result_recorded(
            commit_url=record.commit_url, deliv_id=record.deliv_id
        )
        return True


__all__ = ["DispatchOutcome", "DispatchResult", "DispatchStatus", "TestDispatcher"]
