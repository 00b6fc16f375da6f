"""JobQueue protocol for handing test jobs to the container runner."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from autotest.models import ContainerInput


@typ.runtime_checkable
class JobQueue(typ.Protocol):
    """Protocol for enqueueing container jobs.

    Implementations raise :class:`~autotest.errors.DispatchError` when the
    job could not be accepted.
    """

    async def enqueue(self, job: ContainerInput) -> None:
        """Accept ``job`` for execution."""
        ...
