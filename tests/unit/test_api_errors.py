"""Unit tests for autotest.api.errors error handlers.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_errors.py

"""

from __future__ import annotations

import falcon.asgi
import falcon.testing
import pytest

from autotest.api.errors import handle_event_validation, handle_unavailable
from autotest.errors import (
    DispatchError,
    DuplicateRecordError,
    EventValidationError,
    PersistenceError,
)


class _RaisingResource:
    """Resource that raises the configured exception."""

    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def on_get(
        self, req: falcon.asgi.Request, resp: falcon.asgi.Response
    ) -> None:
        raise self._exc


def _client(exc: Exception) -> falcon.testing.TestClient:
    app = falcon.asgi.App()
    app.add_route("/boom", _RaisingResource(exc))
    app.add_error_handler(EventValidationError, handle_event_validation)
    app.add_error_handler(PersistenceError, handle_unavailable)
    app.add_error_handler(DispatchError, handle_unavailable)
    return falcon.testing.TestClient(app)


def test_validation_error_with_field() -> None:
    """Field-level validation errors name the field."""
    result = _client(EventValidationError.missing("user_name")).simulate_get("/boom")
    assert result.status == falcon.HTTP_400
    assert result.json == {
        "title": "Invalid event",
        "description": "is required",
        "field": "user_name",
    }


def test_validation_error_without_field() -> None:
    """Schema errors carry only a description."""
    result = _client(EventValidationError("malformed JSON: x")).simulate_get("/boom")
    assert result.status == falcon.HTTP_400
    assert result.json == {"title": "Invalid event", "description": "malformed JSON: x"}


@pytest.mark.parametrize(
    ("exc", "title"),
    [
        pytest.param(
            PersistenceError.for_operation("save_push", "disk full"),
            "Store unavailable",
            id="store",
        ),
        pytest.param(
            DuplicateRecordError("https://github.com/o/r/commit/a", "d1"),
            "Store unavailable",
            id="duplicate",
        ),
        pytest.param(
            DispatchError.enqueue_failed("https://github.com/o/r/commit/a", "d1"),
            "Queue unavailable",
            id="queue",
        ),
    ],
)
def test_unavailable_errors(exc: Exception, title: str) -> None:
    """Store and queue failures are retryable 503 responses."""
    result = _client(exc).simulate_get("/boom")
    assert result.status == falcon.HTTP_503
    assert result.json["title"] == title
    assert result.json["description"] == str(exc)
