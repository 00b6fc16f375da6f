"""Assemble the orchestration engine from configuration.

``build_engine`` selects the Result Store backend, the publisher and the job
queue at startup and wires them to one shared set of key locks, one clock and
one scheduler. Any collaborator can be passed in explicitly, which is how
tests substitute in-memory or mocked adapters.

Usage
-----
>>> async with await build_engine(AutotestConfig.from_env()) as engine:
...     await engine.dispatcher.on_push(push_event)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from autotest.common.time import utcnow
from autotest.courses import CourseCatalogue, DeliverableResolver, load_catalogue
from autotest.dispatcher import TestDispatcher
from autotest.locks import KeyedLock
from autotest.logging import get_logger, log_info
from autotest.observability import AutotestEventLogger
from autotest.orchestrator import (
    CommentOrchestrator,
    OrchestratorDependencies,
    OrchestratorSettings,
)
from autotest.publisher import GitHubFeedbackPublisher, GitHubPublisherConfig
from autotest.queue import InMemoryJobQueue
from autotest.quota import QuotaGuard
from autotest.scheduler import TaskScheduler
from autotest.store import create_result_store

if typ.TYPE_CHECKING:
    import datetime as dt

    from autotest.config import AutotestConfig
    from autotest.publisher import FeedbackPublisher
    from autotest.queue import JobQueue
    from autotest.store import ResultStore

__all__ = [
    "AutotestEngine",
    "build_engine",
    "build_job_queue",
    "load_configured_catalogue",
]

logger = get_logger(__name__)


@dc.dataclass(slots=True)
class AutotestEngine:
    """The wired components of one autotest instance.

    Entering the engine as an async context manager starts the scheduler;
    leaving it shuts the scheduler down and closes the publisher and store.
    """

    config: AutotestConfig
    store: ResultStore
    publisher: FeedbackPublisher
    queue: JobQueue
    scheduler: TaskScheduler
    dispatcher: TestDispatcher
    orchestrator: CommentOrchestrator

    async def start(self) -> None:
        """Start the scheduler."""
        await self.scheduler.start()

    async def aclose(self) -> None:
        """Stop the scheduler and release remote resources."""
        await self.scheduler.shutdown()
        await self.publisher.aclose()
        await self.store.aclose()

    async def __aenter__(self) -> typ.Self:
        """Start the engine."""
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close the engine."""
        await self.aclose()


def load_configured_catalogue(config: AutotestConfig) -> CourseCatalogue:
    """Load the catalogue named by ``config``, or an empty one."""
    if config.catalogue_path is None:
        log_info(logger, "No course catalogue configured; no pushes will be routed")
        return CourseCatalogue()
    return load_catalogue(config.catalogue_path)


def build_job_queue(config: AutotestConfig) -> JobQueue:
    """Return the Dramatiq queue when a runner is configured, else in-memory."""
    if config.runner_url:
        from autotest.queue.dramatiq_queue import DramatiqJobQueue

        log_info(logger, "Sending container jobs through Dramatiq")
        return DramatiqJobQueue()
    log_info(logger, "No runner configured; retaining container jobs in memory")
    return InMemoryJobQueue()


async def build_engine(  # noqa: PLR0913 - every collaborator is injectable
    config: AutotestConfig,
    *,
    store: ResultStore | None = None,
    publisher: FeedbackPublisher | None = None,
    queue: JobQueue | None = None,
    catalogue: CourseCatalogue | None = None,
    clock: typ.Callable[[], dt.datetime] = utcnow,
) -> AutotestEngine:
    """Build an engine from ``config`` and optional explicit collaborators.

    Parameters
    ----------
    config
        Instance configuration.
    store
        Result Store; built from ``config.store_backend`` when omitted.
    publisher
        Feedback publisher; the GitHub publisher when omitted.
    queue
        Job queue; chosen by :func:`build_job_queue` when omitted.
    catalogue
        Course catalogue; loaded from ``config.catalogue_path`` when omitted.
    clock
        Returns the current aware time for every component.

    Returns
    -------
    AutotestEngine
        An engine that still needs to be started.

    """
    if store is None:
        store = await create_result_store(config)
    if publisher is None:
        publisher = GitHubFeedbackPublisher(GitHubPublisherConfig.from_config(config))
    if queue is None:
        queue = build_job_queue(config)
    if catalogue is None:
        catalogue = load_configured_catalogue(config)

    events = AutotestEventLogger()
    locks = KeyedLock()
    resolver = DeliverableResolver(catalogue, default_interval=config.feedback_interval)
    scheduler = TaskScheduler(clock=clock, event_logger=events)
    dispatcher = TestDispatcher(
        store,
        queue,
        resolver,
        locks=locks,
        clock=clock,
        event_logger=events,
        in_flight_ttl=config.in_flight_ttl,
    )
    orchestrator = CommentOrchestrator(
        OrchestratorDependencies(
            store=store,
            publisher=publisher,
            scheduler=scheduler,
            dispatcher=dispatcher,
            quota=QuotaGuard(store, resolver),
            resolver=resolver,
            locks=locks,
        ),
        settings=OrchestratorSettings.from_config(config),
        clock=clock,
        event_logger=events,
    )
    return AutotestEngine(
        config=config,
        store=store,
        publisher=publisher,
        queue=queue,
        scheduler=scheduler,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
    )
