"""Tests for structured autotest event logging."""

from __future__ import annotations

import datetime as dt

import pytest

from autotest import observability
from autotest.observability import AutotestEventLogger, AutotestEventType


class _FakeLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        self.calls.append((level, message, exc_info))
        return message


@pytest.fixture
def fake_logger(monkeypatch: pytest.MonkeyPatch) -> _FakeLogger:
    """Capture events emitted by the observability module."""
    fake = _FakeLogger()
    monkeypatch.setattr(observability, "logger", fake)
    return fake


def test_push_events(fake_logger: _FakeLogger) -> None:
    """Push lifecycle events carry their event type and key."""
    events = AutotestEventLogger()
    events.log_push_queued(commit_url="u", deliv_id="d1")
    events.log_push_unrouted(repo="sandbox", commit_url="u")
    events.log_push_requeued(
        commit_url="u",
        deliv_id="d1",
        enqueued_at=dt.datetime(2024, 9, 2, 12, 0, tzinfo=dt.UTC),
    )
    events.log_result_duplicate(commit_url="u", deliv_id="d1")

    assert fake_logger.calls == [
        ("INFO", "[autotest.push.queued] commit_url=u deliv_id=d1", None),
        ("WARNING", "[autotest.push.unrouted] repo=sandbox commit_url=u", None),
        (
            "WARNING",
            "[autotest.push.requeued] commit_url=u deliv_id=d1 "
            "enqueued_at=2024-09-02T12:00:00+00:00",
            None,
        ),
        ("WARNING", "[autotest.push.result_duplicate] commit_url=u deliv_id=d1", None),
    ]


@pytest.mark.parametrize(
    ("event_type", "level"),
    [
        (AutotestEventType.COMMENT_POSTED, "INFO"),
        (AutotestEventType.COMMENT_DENIED, "INFO"),
        (AutotestEventType.COMMENT_FAILED, "WARNING"),
        (AutotestEventType.COMMENT_RECHECK_FAILED, "WARNING"),
        (AutotestEventType.COMMENT_TIMED_OUT, "INFO"),
    ],
)
def test_comment_levels(
    fake_logger: _FakeLogger, event_type: AutotestEventType, level: str
) -> None:
    """Only failed comments and failed re-checks are logged as warnings."""
    AutotestEventLogger().log_comment(
        event_type, commit_url="u", user_name="s1", deliv_id="d1", detail="x=1"
    )
    ((emitted_level, message, _),) = fake_logger.calls
    assert emitted_level == level
    assert message == f"[{event_type}] commit_url=u user=s1 deliv_id=d1 x=1"


def test_task_events(fake_logger: _FakeLogger) -> None:
    """Task events include the task name; failures attach the exception."""
    events = AutotestEventLogger()
    error = RuntimeError("boom")
    events.log_task_registered(
        task_name="t", fire_time=dt.datetime(2024, 9, 2, tzinfo=dt.UTC)
    )
    events.log_task_failed(task_name="t", error=error)

    registered, failed = fake_logger.calls
    assert registered[1] == (
        "[autotest.task.registered] task=t fire_time=2024-09-02T00:00:00+00:00"
    )
    assert failed[0] == "ERROR"
    assert "error_type=RuntimeError error_message=boom" in failed[1]
    assert failed[2] is error
