"""Health resources for liveness and readiness checks.

Liveness never depends on the engine. Readiness reports 503 until the
engine has been started by the lifespan middleware.
"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from autotest.api.middleware import EngineProvider

__all__ = ["HealthResource", "ReadyResource"]


class HealthResource:
    """Liveness resource returning ``{"status": "ok"}``."""

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health requests."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


class ReadyResource:
    """Readiness resource.

    Without a provider the app is health-only and always ready.
    """

    def __init__(self, provider: EngineProvider | None = None) -> None:
        """Optionally tie readiness to the engine provider."""
        self._provider = provider

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /ready requests."""
        if self._provider is not None and not self._provider.ready:
            resp.media = {"status": "starting"}
            resp.status = HTTPStatus.SERVICE_UNAVAILABLE
            return
        resp.media = {"status": "ready"}
        resp.status = HTTPStatus.OK
