"""Per-user feedback cooldown.

``QuotaGuard`` answers whether a user may receive feedback for a deliverable
right now. It only reads the Result Store; recording that feedback was given
is the orchestrator's job, and only after a successful publish.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from autotest.common.time import ensure_aware

if typ.TYPE_CHECKING:
    import datetime as dt

    from autotest.courses import DeliverableResolver
    from autotest.store import ResultStore


@dc.dataclass(frozen=True, slots=True)
class QuotaDecision:
    """Outcome of a cooldown check.

    Attributes
    ----------
    allowed
        Whether feedback may be given now.
    retry_after
        Remaining cooldown when denied; ``None`` when allowed.

    """

    allowed: bool
    retry_after: dt.timedelta | None = None


class QuotaGuard:
    """Enforce the minimum interval between feedback grants."""

    def __init__(self, store: ResultStore, resolver: DeliverableResolver) -> None:
        """Bind the guard to a store and the interval policy."""
        self._store = store
        self._resolver = resolver

    async def check_quota(
        self,
        course_id: str,
        deliv_id: str,
        user_name: str,
        now: dt.datetime,
    ) -> QuotaDecision:
        """Return whether ``user_name`` may receive feedback at ``now``.

        Raises
        ------
        PersistenceError
            If the latest grant could not be read.

        """
        now = ensure_aware(now, field="now")
        latest = await self._store.get_latest_feedback_given_record(
            course_id, deliv_id, user_name
        )
        if latest is None:
            return QuotaDecision(allowed=True)

        interval = self._resolver.feedback_interval(course_id, deliv_id)
        elapsed = now - latest.timestamp
        if elapsed >= interval:
            return QuotaDecision(allowed=True)
        return QuotaDecision(allowed=False, retry_after=interval - elapsed)
