"""Falcon error handlers mapping the autotest error taxonomy to HTTP.

``EventValidationError`` becomes 400; ``PersistenceError`` and
``DispatchError`` become 503 because the request may succeed once the store
or broker recovers.

Usage
-----
Register the handlers on the Falcon app::

    app.add_error_handler(EventValidationError, handle_event_validation)
    app.add_error_handler(PersistenceError, handle_unavailable)
    app.add_error_handler(DispatchError, handle_unavailable)

"""

from __future__ import annotations

import typing as typ

import falcon

from autotest.errors import DispatchError, PersistenceError
from autotest.logging import get_logger, log_error

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from autotest.errors import EventValidationError

__all__ = ["handle_event_validation", "handle_unavailable"]

logger = get_logger(__name__)


async def handle_event_validation(
    _req: Request,
    resp: Response,
    ex: EventValidationError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``EventValidationError`` to an HTTP 400 JSON response.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The validation error with reason and optional field.
    _params
        URI template parameters (unused).

    """
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {
        "title": "Invalid event",
        "description": ex.reason,
    }
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_unavailable(
    req: Request,
    resp: Response,
    ex: PersistenceError | DispatchError,
    _params: dict[str, typ.Any],
) -> None:
    """Map store and queue failures to an HTTP 503 JSON response."""
    log_error(logger, "%s %s failed: %s", req.method, req.path, ex, exc_info=ex)
    if isinstance(ex, PersistenceError):
        title = "Store unavailable"
    else:
        title = "Queue unavailable"
    resp.status = falcon.HTTP_503
    resp.media = {"title": title, "description": str(ex)}
