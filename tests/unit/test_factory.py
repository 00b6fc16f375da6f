"""Tests for engine assembly."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest

from autotest.config import AutotestConfig
from autotest.courses import CatalogueValidationError
from autotest.factory import build_engine, build_job_queue, load_configured_catalogue
from autotest.publisher import GitHubFeedbackPublisher
from autotest.queue import InMemoryJobQueue
from autotest.store import FileResultStore
from tests.helpers.builders import push_event
from tests.helpers.engine import RecordingPublisher

if typ.TYPE_CHECKING:
    from pathlib import Path

CATALOGUE = """\
courses:
  - id: cs310
    repo_pattern: "project_*"
    default_deliverable: d1
    deliverables:
      - id: d1
"""


def test_queue_defaults_to_memory() -> None:
    """Without a runner URL jobs are retained in memory."""
    assert isinstance(build_job_queue(AutotestConfig()), InMemoryJobQueue)


def test_queue_uses_dramatiq_with_runner() -> None:
    """A runner URL selects the Dramatiq queue."""
    from autotest.queue.dramatiq_queue import DramatiqJobQueue

    queue = build_job_queue(AutotestConfig(runner_url="http://runner.test"))
    assert isinstance(queue, DramatiqJobQueue)


def test_missing_catalogue_path_gives_empty_catalogue() -> None:
    """No catalogue means no course routes anything."""
    assert load_configured_catalogue(AutotestConfig()).courses == []


def test_invalid_catalogue_fails_startup(tmp_path: Path) -> None:
    """A broken catalogue file aborts engine assembly."""
    path = tmp_path / "courses.yaml"
    path.write_text("courses: 3\n", encoding="utf-8")
    with pytest.raises(CatalogueValidationError):
        load_configured_catalogue(AutotestConfig(catalogue_path=path))


@pytest.mark.asyncio
async def test_build_engine_from_config(tmp_path: Path) -> None:
    """A configuration alone yields a working engine."""
    path = tmp_path / "courses.yaml"
    path.write_text(CATALOGUE, encoding="utf-8")
    config = AutotestConfig(
        instance="test", persist_dir=tmp_path / "data", catalogue_path=path
    )

    async with await build_engine(config) as engine:
        assert isinstance(engine.store, FileResultStore)
        assert isinstance(engine.publisher, GitHubFeedbackPublisher)
        outcome = await engine.dispatcher.on_push(push_event())
        assert outcome.queued == ["d1"]

    assert (tmp_path / "data" / "pushes.jsonl").exists()


@pytest.mark.asyncio
async def test_engine_close_releases_collaborators(tmp_path: Path) -> None:
    """Closing the engine stops the scheduler and closes the publisher."""
    publisher = RecordingPublisher()
    engine = await build_engine(
        AutotestConfig(instance="test", persist_dir=tmp_path), publisher=publisher
    )
    await engine.start()
    await engine.aclose()

    assert publisher.closed is True
    late = dt.datetime.now(dt.UTC) + dt.timedelta(hours=1)
    assert engine.scheduler.register_task("late", late, lambda _: None) is False
