"""Application factory for the autotest Falcon ASGI application.

This module provides ``create_app()`` which builds the Falcon ASGI
application with health endpoints and, when an engine builder is supplied,
the event ingestion endpoints backed by the orchestration engine.

Usage
-----
Create a health-only app::

    app = create_app()

Create a full app::

    from autotest.api.app import AppDependencies, create_app

    deps = AppDependencies(build_engine=lambda: build_engine(config))
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from autotest.api.errors import handle_event_validation, handle_unavailable
from autotest.api.health.resources import HealthResource, ReadyResource
from autotest.errors import DispatchError, EventValidationError, PersistenceError

if typ.TYPE_CHECKING:
    from autotest.api.middleware import EngineBuilder

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    Attributes
    ----------
    build_engine
        Coroutine function returning an unstarted engine; called on
        lifespan startup.

    """

    build_engine: EngineBuilder


def create_app(dependencies: AppDependencies | None = None) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies. When ``None`` only ``/health``
        and ``/ready`` are registered.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    if dependencies is None:
        app = falcon.asgi.App()
        app.add_route("/health", HealthResource())
        app.add_route("/ready", ReadyResource())
        return app

    from autotest.api.events.resources import CommentEventResource, PushEventResource
    from autotest.api.middleware import EngineLifespan, EngineProvider

    provider = EngineProvider(dependencies.build_engine)
    app = falcon.asgi.App(middleware=[EngineLifespan(provider)])  # type: ignore[no-matching-overload]  # Falcon stubs

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(provider))
    app.add_route("/events/push", PushEventResource(provider))
    app.add_route("/events/comment", CommentEventResource(provider))

    app.add_error_handler(EventValidationError, handle_event_validation)
    app.add_error_handler(PersistenceError, handle_unavailable)
    app.add_error_handler(DispatchError, handle_unavailable)

    return app
