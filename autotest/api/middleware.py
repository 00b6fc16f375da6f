"""ASGI lifespan middleware that owns the autotest engine.

The engine needs a running event loop to start its scheduler and, for the
database backend, to create tables, so it is built on lifespan startup rather
than when the app object is constructed.

Usage
-----
::

    provider = EngineProvider(lambda: build_engine(config))
    app = falcon.asgi.App(middleware=[EngineLifespan(provider)])

"""

from __future__ import annotations

import typing as typ

import falcon

from autotest.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    from autotest.factory import AutotestEngine

__all__ = ["EngineLifespan", "EngineProvider"]

logger = get_logger(__name__)

type EngineBuilder = typ.Callable[[], typ.Awaitable[AutotestEngine]]


class EngineProvider:
    """Hold the engine between lifespan startup and shutdown."""

    def __init__(self, build: EngineBuilder) -> None:
        """Remember how to build the engine."""
        self._build = build
        self._engine: AutotestEngine | None = None

    @property
    def ready(self) -> bool:
        """Return whether the engine has been started."""
        return self._engine is not None

    def get(self) -> AutotestEngine:
        """Return the running engine.

        Raises
        ------
        falcon.HTTPServiceUnavailable
            If the app has not finished starting.

        """
        if self._engine is None:
            raise falcon.HTTPServiceUnavailable(description="engine not started")
        return self._engine

    async def startup(self) -> None:
        """Build and start the engine."""
        engine = await self._build()
        await engine.start()
        self._engine = engine
        log_info(
            logger, "Autotest engine started (instance=%s)", engine.config.instance
        )

    async def shutdown(self) -> None:
        """Close the engine if it was started."""
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.aclose()
            log_info(logger, "Autotest engine stopped")


class EngineLifespan:
    """Falcon middleware tying the engine to ASGI lifespan events."""

    def __init__(self, provider: EngineProvider) -> None:
        """Bind the middleware to ``provider``."""
        self._provider = provider

    async def process_startup(
        self, _scope: dict[str, typ.Any], _event: object
    ) -> None:
        """Start the engine."""
        await self._provider.startup()

    async def process_shutdown(
        self, _scope: dict[str, typ.Any], _event: object
    ) -> None:
        """Stop the engine."""
        await self._provider.shutdown()
