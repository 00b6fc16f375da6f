"""Fire-once, named, time-triggered callbacks on the asyncio loop.

``TaskScheduler`` is an explicitly constructed object with a lifecycle: it is
started inside a running loop, hands out immutable snapshots of its tasks and
on shutdown cancels pending timers and waits for callbacks already running.

Every name ever registered stays reserved, so a task name identifies exactly
one callback for the lifetime of the scheduler.

Usage
-----
>>> async with TaskScheduler() as scheduler:
...     scheduler.register_task(
...         "recheck:abc", utcnow() + dt.timedelta(seconds=60), callback, data
...     )

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import enum
import inspect
import typing as typ

from autotest.common.time import ensure_aware, utcnow
from autotest.observability import AutotestEventLogger

if typ.TYPE_CHECKING:
    import datetime as dt

type TaskCallback = typ.Callable[[typ.Any], object]
type Clock = typ.Callable[[], dt.datetime]


class TaskState(enum.StrEnum):
    """Lifecycle states; ``FIRED`` and ``CANCELLED`` are terminal."""

    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


@dc.dataclass(frozen=True, slots=True)
class TaskStatus:
    """Existence and completion flags for a task name."""

    exists: bool
    complete: bool


@dc.dataclass(frozen=True, slots=True)
class TaskSnapshot:
    """Immutable view of a registered task.

    ``data`` is excluded from equality and hashing so snapshots carrying
    unhashable payloads can still be collected in a set.
    """

    name: str
    fire_time: dt.datetime
    state: TaskState
    complete: bool
    data: typ.Any = dc.field(default=None, compare=False, hash=False)


@dc.dataclass(slots=True)
class _Task:
    name: str
    fire_time: dt.datetime
    fn: TaskCallback
    data: typ.Any
    state: TaskState = TaskState.PENDING
    complete: bool = False
    handle: asyncio.TimerHandle | None = None

    def snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            name=self.name,
            fire_time=self.fire_time,
            state=self.state,
            complete=self.complete,
            data=self.data,
        )


class TaskScheduler:
    """Register, cancel and inspect named one-shot tasks.

    Parameters
    ----------
    clock
        Returns the current aware time; injectable for tests.
    event_logger
        Destination for ``autotest.task.*`` events.

    """

    def __init__(
        self,
        *,
        clock: Clock = utcnow,
        event_logger: AutotestEventLogger | None = None,
    ) -> None:
        """Create an idle scheduler; call :meth:`start` inside a loop."""
        self._clock = clock
        self._events = event_logger or AutotestEventLogger()
        self._tasks: dict[str, _Task] = {}
        self._running: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    async def start(self) -> None:
        """Bind the scheduler to the running loop."""
        self._loop = asyncio.get_running_loop()
        self._closed = False

    async def shutdown(self) -> None:
        """Cancel pending timers and wait for running callbacks."""
        self._closed = True
        for task in self._tasks.values():
            if task.state is TaskState.PENDING:
                self._cancel(task)
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    async def __aenter__(self) -> typ.Self:
        """Start the scheduler."""
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Shut the scheduler down."""
        await self.shutdown()

    def _reject(self, name: str, reason: str) -> bool:
        self._events.log_task_rejected(task_name=name, reason=reason)
        return False

    def register_task(
        self,
        name: str,
        fire_time: dt.datetime,
        fn: TaskCallback,
        data: typ.Any = None,  # noqa: ANN401
    ) -> bool:
        """Schedule ``fn(data)`` to run once at ``fire_time``.

        Parameters
        ----------
        name
            Unique task name; a name can only ever be registered once.
        fire_time
            Aware time at which to invoke ``fn``.
        fn
            Sync callable or coroutine function receiving ``data``.
        data
            Opaque payload passed to ``fn``.

        Returns
        -------
        bool
            ``False`` when ``fire_time`` is not in the future, the name was
            already used or the scheduler has shut down.

        """
        if self._closed:
            return self._reject(name, "scheduler shut down")
        fire_time = ensure_aware(fire_time, field="fire_time")
        now = self._clock()
        if fire_time <= now:
            return self._reject(name, "fire_time not in the future")
        if name in self._tasks:
            return self._reject(name, "duplicate name")

        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        task = _Task(name=name, fire_time=fire_time, fn=fn, data=data)
        delay = (fire_time - now).total_seconds()
        task.handle = loop.call_later(delay, self._fire, task)
        self._tasks[name] = task
        self._events.log_task_registered(task_name=name, fire_time=fire_time)
        return True

    def _fire(self, task: _Task) -> None:
        if task.state is not TaskState.PENDING:
            return
        task.state = TaskState.FIRED
        task.handle = None
        loop = typ.cast("asyncio.AbstractEventLoop", self._loop)
        runner = loop.create_task(self._run(task), name=f"autotest-task:{task.name}")
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)

    async def _run(self, task: _Task) -> None:
        try:
            result = task.fn(task.data)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001 - callbacks must not kill the loop
            self._events.log_task_failed(task_name=task.name, error=exc)
            return
        task.complete = True
        self._events.log_task_fired(task_name=task.name)

    def _cancel(self, task: _Task) -> None:
        if task.handle is not None:
            task.handle.cancel()
            task.handle = None
        task.state = TaskState.CANCELLED
        self._events.log_task_cancelled(task_name=task.name)

    def get_task_status(self, name: str) -> TaskStatus:
        """Return whether ``name`` exists and whether its callback completed."""
        task = self._tasks.get(name)
        if task is None:
            return TaskStatus(exists=False, complete=False)
        return TaskStatus(exists=True, complete=task.complete)

    def cancel_task(self, name: str) -> bool:
        """Cancel ``name`` if it is still pending.

        Returns ``False`` only for unknown names; a task that already fired
        or was cancelled is left as it is and ``True`` is returned.
        """
        task = self._tasks.get(name)
        if task is None:
            return False
        if task.state is TaskState.PENDING:
            self._cancel(task)
        return True

    def get_all_tasks(self) -> set[TaskSnapshot]:
        """Return snapshots of every task ever registered."""
        return {task.snapshot() for task in self._tasks.values()}

    def pending_count(self) -> int:
        """Return the number of tasks still waiting to fire."""
        pending = TaskState.PENDING
        return sum(1 for task in self._tasks.values() if task.state is pending)


__all__ = [
    "TaskCallback",
    "TaskScheduler",
    "TaskSnapshot",
    "TaskState",
    "TaskStatus",
]
