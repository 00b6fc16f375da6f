"""In-process job queue that retains jobs instead of running them."""

from __future__ import annotations

import typing as typ

from autotest.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    from autotest.models import ContainerInput

logger = get_logger(__name__)


class InMemoryJobQueue:
    """Keep enqueued jobs in a list.

    Used when no container runner is configured and by tests that inspect
    what the dispatcher scheduled.
    """

    def __init__(self) -> None:
        """Start with an empty queue."""
        self.jobs: list[ContainerInput] = []

    async def enqueue(self, job: ContainerInput) -> None:
        """Append ``job``."""
        self.jobs.append(job)
        log_info(logger, "Retained job for %s (%s)", job.commit_url, job.deliv_id)

    def drain(self) -> list[ContainerInput]:
        """Return and forget every retained job."""
        jobs, self.jobs = self.jobs, []
        return jobs
