"""Unit tests for autotest.api.app application factory.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_app.py

"""

from __future__ import annotations

import typing as typ

import falcon.asgi
import falcon.testing
import msgspec
import pytest

from autotest.api.app import AppDependencies, create_app
from autotest.config import AutotestConfig
from autotest.errors import DispatchError
from autotest.factory import build_engine
from autotest.store import FileResultStore
from tests.helpers.builders import (
    COMMIT_URL,
    catalogue,
    comment_event,
    commit_record,
    push_event,
)
from tests.helpers.engine import RecordingPublisher, build_test_engine

if typ.TYPE_CHECKING:
    from pathlib import Path

    from autotest.factory import AutotestEngine
    from autotest.models import ContainerInput


@pytest.fixture
def publisher() -> RecordingPublisher:
    """Return a publisher that records posts."""
    return RecordingPublisher()


@pytest.fixture
def deps(tmp_path: Path, publisher: RecordingPublisher) -> AppDependencies:
    """Build AppDependencies around an in-process engine."""

    async def _build() -> AutotestEngine:
        return await build_test_engine(tmp_path, publisher=publisher)

    return AppDependencies(build_engine=_build)


class _FailingQueue:
    async def enqueue(self, job: ContainerInput) -> None:
        raise DispatchError.enqueue_failed(job.commit_url, job.deliv_id)


class TestCreateAppHealthOnly:
    """Tests for create_app() without domain dependencies."""

    def test_returns_falcon_app(self) -> None:
        """Create_app() returns a Falcon ASGI App."""
        assert isinstance(create_app(), falcon.asgi.App), "expected Falcon ASGI App"

    def test_health_and_ready(self) -> None:
        """Health-only app is always live and ready."""
        client = falcon.testing.TestClient(create_app())
        assert client.simulate_get("/health").json == {"status": "ok"}
        assert client.simulate_get("/ready").json == {"status": "ready"}

    def test_event_endpoints_not_registered(self) -> None:
        """Without deps, event endpoints return 404."""
        client = falcon.testing.TestClient(create_app())
        result = client.simulate_post("/events/push", json={})
        assert result.status == falcon.HTTP_404, "expected HTTP 404"


class TestCreateAppWithDeps:
    """Tests for create_app() with an engine builder."""

    @pytest.mark.asyncio
    async def test_ready_after_startup(self, deps: AppDependencies) -> None:
        """Lifespan startup builds the engine."""
        async with falcon.testing.ASGIConductor(create_app(deps)) as conductor:
            result = await conductor.simulate_get("/ready")
        assert result.json == {"status": "ready"}

    @pytest.mark.asyncio
    async def test_push_is_accepted(self, deps: AppDependencies) -> None:
        """A push answers 202 with per-deliverable results."""
        async with falcon.testing.ASGIConductor(create_app(deps)) as conductor:
            body = msgspec.to_builtins(push_event())
            first = await conductor.simulate_post("/events/push", json=body)
            second = await conductor.simulate_post("/events/push", json=body)

        assert first.status == falcon.HTTP_202
        assert first.json == {
            "commit_url": COMMIT_URL,
            "results": [{"course_id": "cs310", "deliv_id": "d1", "status": "queued"}],
        }
        assert second.json["results"][0]["status"] == "already_queued"

    @pytest.mark.asyncio
    async def test_comment_deferred_then_answered(
        self, tmp_path: Path, publisher: RecordingPublisher
    ) -> None:
        """A comment on an untested commit is deferred with 202."""
        holder: list[AutotestEngine] = []

        async def _build() -> AutotestEngine:
            engine = await build_test_engine(
                tmp_path, publisher=publisher, max_rechecks=50
            )
            holder.append(engine)
            return engine

        app = create_app(AppDependencies(build_engine=_build))
        async with falcon.testing.ASGIConductor(app) as conductor:
            body = msgspec.to_builtins(comment_event())
            deferred = await conductor.simulate_post("/events/comment", json=body)
            await holder[0].orchestrator.on_test_result(commit_record())

        assert deferred.status == falcon.HTTP_202
        assert deferred.json["status"] == "deferred"
        assert deferred.json["reason"] == "awaiting_result"
        assert deferred.json["task_name"].startswith("recheck:")
        assert len(publisher.messages) == 1

    @pytest.mark.asyncio
    async def test_comment_denied_reports_retry(
        self, tmp_path: Path, publisher: RecordingPublisher
    ) -> None:
        """A denied request answers 200 with the remaining cooldown."""
        await FileResultStore(tmp_path, instance="test").save_output_record(
            commit_record()
        )

        async def _build() -> AutotestEngine:
            return await build_test_engine(tmp_path, publisher=publisher)

        app = create_app(AppDependencies(build_engine=_build))
        async with falcon.testing.ASGIConductor(app) as conductor:
            body = msgspec.to_builtins(comment_event())
            posted = await conductor.simulate_post("/events/comment", json=body)
            denied = await conductor.simulate_post("/events/comment", json=body)

        assert posted.status == falcon.HTTP_200
        assert posted.json == {"status": "posted", "reason": "feedback_posted"}
        assert denied.status == falcon.HTTP_200
        assert denied.json["status"] == "denied"
        assert denied.json["retry_after_seconds"] == 12 * 3600
        assert "already received feedback" in denied.json["markdown"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("body", "field"),
        [
            pytest.param(b"{not json", None, id="malformed"),
            pytest.param(b'{"repo": "r"}', None, id="missing_fields"),
        ],
    )
    async def test_invalid_bodies_are_400(
        self, deps: AppDependencies, body: bytes, field: str | None
    ) -> None:
        """Undecodable events are rejected before reaching the engine."""
        async with falcon.testing.ASGIConductor(create_app(deps)) as conductor:
            result = await conductor.simulate_post(
                "/events/push",
                body=body,
                headers={"Content-Type": "application/json"},
            )
        assert result.status == falcon.HTTP_400
        assert result.json["title"] == "Invalid event"
        assert result.json.get("field") == field

    @pytest.mark.asyncio
    async def test_semantic_validation_names_field(
        self, deps: AppDependencies
    ) -> None:
        """Well-formed events with empty fields report the field."""
        body = msgspec.to_builtins(push_event())
        body["commit"] = ""
        async with falcon.testing.ASGIConductor(create_app(deps)) as conductor:
            result = await conductor.simulate_post("/events/push", json=body)
        assert result.status == falcon.HTTP_400
        assert result.json["field"] == "commit"

    @pytest.mark.asyncio
    async def test_queue_failure_is_503(self, tmp_path: Path) -> None:
        """A broker failure maps to 503 so the sender retries."""

        async def _build() -> AutotestEngine:
            return await build_engine(
                AutotestConfig(instance="test", persist_dir=tmp_path),
                publisher=RecordingPublisher(),
                queue=_FailingQueue(),
                catalogue=catalogue(),
            )

        app = create_app(AppDependencies(build_engine=_build))
        async with falcon.testing.ASGIConductor(app) as conductor:
            result = await conductor.simulate_post(
                "/events/push", json=msgspec.to_builtins(push_event())
            )
        assert result.status == falcon.HTTP_503
        assert result.json["title"] == "Queue unavailable"
