"""Resources accepting already-typed push and comment events.

``POST /events/push`` takes a ``PushEvent`` body and answers 202 with the
per-deliverable dispatch results. ``POST /events/comment`` takes a
``CommentEvent`` body and answers 202 when the request was deferred and 200
otherwise.

Usage
-----
Register the resources on the Falcon app::

    app.add_route("/events/push", PushEventResource(provider))
    app.add_route("/events/comment", CommentEventResource(provider))

"""

from __future__ import annotations

import typing as typ

import falcon

from autotest.models import CommentEvent, PushEvent, decode_event
from autotest.orchestrator import CommentStatus

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from autotest.api.middleware import EngineProvider
    from autotest.dispatcher import DispatchOutcome
    from autotest.orchestrator import CommentOutcome

__all__ = ["CommentEventResource", "PushEventResource"]


def _serialize_dispatch(outcome: DispatchOutcome) -> dict[str, typ.Any]:
    return {
        "commit_url": outcome.commit_url,
        "results": [
            {
                "course_id": result.course_id,
                "deliv_id": result.deliv_id,
                "status": str(result.status),
            }
            for result in outcome.results
        ],
    }


def _serialize_comment(outcome: CommentOutcome) -> dict[str, typ.Any]:
    media: dict[str, typ.Any] = {
        "status": str(outcome.status),
        "reason": str(outcome.reason),
    }
    if outcome.retry_after is not None:
        media["retry_after_seconds"] = int(outcome.retry_after.total_seconds())
    if outcome.task_name is not None:
        media["task_name"] = outcome.task_name
    if outcome.markdown is not None:
        media["markdown"] = outcome.markdown
    return media


class PushEventResource:
    """Resource for ``POST /events/push``."""

    def __init__(self, provider: EngineProvider) -> None:
        """Bind the resource to the engine provider."""
        self._provider = provider

    async def on_post(self, req: Request, resp: Response) -> None:
        """Dispatch test jobs for a push event."""
        event = decode_event(await req.stream.read(), PushEvent)
        outcome = await self._provider.get().dispatcher.on_push(event)
        resp.media = _serialize_dispatch(outcome)
        resp.status = falcon.HTTP_202


class CommentEventResource:
    """Resource for ``POST /events/comment``."""

    def __init__(self, provider: EngineProvider) -> None:
        """Bind the resource to the engine provider."""
        self._provider = provider

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle a feedback request."""
        event = decode_event(await req.stream.read(), CommentEvent)
        outcome = await self._provider.get().orchestrator.on_comment(event)
        resp.media = _serialize_comment(outcome)
        resp.status = (
            falcon.HTTP_202
            if outcome.status is CommentStatus.DEFERRED
            else falcon.HTTP_200
        )
