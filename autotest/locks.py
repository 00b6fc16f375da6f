"""Per-key mutual exclusion for check-then-act sequences.

Push handlers, comment handlers and scheduled re-checks that touch the same
(commit_url, deliv_id) key must not interleave between the existence check and
the write that follows it. ``KeyedLock`` hands out one ``asyncio.Lock`` per key
and forgets it once no coroutine holds or waits for it.

Usage
-----
>>> locks = KeyedLock()
>>> async with locks.hold(("https://github.com/o/r/commit/abc", "d1")):
...     ...

"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import typing as typ

type LockKey = tuple[str, str]


@dc.dataclass(slots=True)
class _Entry:
    lock: asyncio.Lock = dc.field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """Registry of asyncio locks keyed by (commit_url, deliv_id)."""

    def __init__(self) -> None:
        """Start with no keys."""
        self._entries: dict[LockKey, _Entry] = {}

    def __len__(self) -> int:
        """Return the number of keys currently held or awaited."""
        return len(self._entries)

    def locked(self, key: LockKey) -> bool:
        """Return whether ``key`` is currently held."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, key: LockKey) -> typ.AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        entry = self._entries.setdefault(key, _Entry())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]
