"""Dramatiq-backed job queue.

Jobs are sent to the ``run_container_job`` actor as msgspec builtins so the
message body is plain JSON regardless of the broker in use.

Usage
-----
>>> queue = DramatiqJobQueue()
>>> await queue.enqueue(job)

"""

from __future__ import annotations

import asyncio
import typing as typ

import msgspec
from dramatiq.errors import DramatiqError

from autotest.errors import DispatchError
from autotest.logging import get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    import dramatiq

    from autotest.models import ContainerInput

logger = get_logger(__name__)


class DramatiqJobQueue:
    """Send container jobs to a Dramatiq actor."""

    def __init__(self, actor: dramatiq.Actor[..., typ.Any] | None = None) -> None:
        """Bind the queue to ``actor``, defaulting to ``run_container_job``."""
        if actor is None:
            from autotest.queue.actor import run_container_job

            actor = run_container_job
        self._actor = actor

    async def enqueue(self, job: ContainerInput) -> None:
        """Send ``job`` to the actor.

        Raises
        ------
        DispatchError
            If the broker refused the message.

        """
        payload = msgspec.to_builtins(job)
        try:
            await asyncio.to_thread(self._actor.send, payload)
        except (DramatiqError, OSError) as exc:
            log_warning(
                logger,
                "Enqueue failed for %s (%s): %s",
                job.commit_url,
                job.deliv_id,
                exc,
            )
            raise DispatchError.enqueue_failed(job.commit_url, job.deliv_id) from exc
        log_info(
            logger,
            "Sent %s (%s) to %s",
            job.commit_url,
            job.deliv_id,
            self._actor.actor_name,
        )
