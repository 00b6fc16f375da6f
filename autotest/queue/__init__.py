"""Job queue port and adapters.

The Dramatiq adapter is imported lazily by the factory so processes that
never enqueue to a broker do not need one configured.
"""

from __future__ import annotations

from .memory import InMemoryJobQueue
from .protocol import JobQueue

__all__ = ["InMemoryJobQueue", "JobQueue"]
