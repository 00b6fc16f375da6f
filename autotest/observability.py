"""Emit structured observability events for pushes, comments and tasks.

The dispatcher, orchestrator and scheduler log their lifecycle through
``AutotestEventLogger`` so every event carries a stable ``[event]`` prefix
followed by ``key=value`` fields.

Usage
-----
>>> events = AutotestEventLogger()
>>> events.log_push_queued(commit_url=url, deliv_id="d1")

"""

from __future__ import annotations

import enum
import typing as typ

from autotest.logging import get_logger, log_error, log_info, log_warning

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)


class AutotestEventType(enum.StrEnum):
    """Structured log event types."""

    PUSH_QUEUED = "autotest.push.queued"
    PUSH_SKIPPED = "autotest.push.skipped"
    PUSH_UNROUTED = "autotest.push.unrouted"
    PUSH_REQUEUED = "autotest.push.requeued"
    RESULT_RECORDED = "autotest.push.result_recorded"
    RESULT_DUPLICATE = "autotest.push.result_duplicate"
    COMMENT_POSTED = "autotest.comment.posted"
    COMMENT_DEFERRED = "autotest.comment.deferred"
    COMMENT_DENIED = "autotest.comment.denied"
    COMMENT_FAILED = "autotest.comment.failed"
    COMMENT_TIMED_OUT = "autotest.comment.timed_out"
    COMMENT_RECHECK_FAILED = "autotest.comment.recheck_failed"
    TASK_REGISTERED = "autotest.task.registered"
    TASK_REJECTED = "autotest.task.rejected"
    TASK_FIRED = "autotest.task.fired"
    TASK_FAILED = "autotest.task.failed"
    TASK_CANCELLED = "autotest.task.cancelled"


class AutotestEventLogger:
    """Emit structured autotest events via femtologging."""

    def log_push_queued(self, *, commit_url: str, deliv_id: str) -> None:
        """Log a test job accepted for a key."""
        log_info(
            logger,
            "[%s] commit_url=%s deliv_id=%s",
            AutotestEventType.PUSH_QUEUED,
            commit_url,
            deliv_id,
        )

    def log_push_skipped(self, *, commit_url: str, deliv_id: str, reason: str) -> None:
        """Log a push that did not produce a job for a key."""
        log_info(
            logger,
            "[%s] commit_url=%s deliv_id=%s reason=%s",
            AutotestEventType.PUSH_SKIPPED,
            commit_url,
            deliv_id,
            reason,
        )

    def log_push_requeued(
        self, *, commit_url: str, deliv_id: str, enqueued_at: dt.datetime
    ) -> None:
        """Log a job presumed lost and enqueued again."""
        log_warning(
            logger,
            "[%s] commit_url=%s deliv_id=%s enqueued_at=%s",
            AutotestEventType.PUSH_REQUEUED,
            commit_url,
            deliv_id,
            enqueued_at.isoformat(),
        )

    def log_push_unrouted(self, *, repo: str, commit_url: str) -> None:
        """Log a push whose repository maps to no deliverable."""
        log_warning(
            logger,
            "[%s] repo=%s commit_url=%s",
            AutotestEventType.PUSH_UNROUTED,
            repo,
            commit_url,
        )

    def log_result_recorded(self, *, commit_url: str, deliv_id: str) -> None:
        """Log a stored test result."""
        log_info(
            logger,
            "[%s] commit_url=%s deliv_id=%s",
            AutotestEventType.RESULT_RECORDED,
            commit_url,
            deliv_id,
        )

    def log_result_duplicate(self, *, commit_url: str, deliv_id: str) -> None:
        """Log a second result for a key that was discarded."""
        log_warning(
            logger,
            "[%s] commit_url=%s deliv_id=%s",
            AutotestEventType.RESULT_DUPLICATE,
            commit_url,
            deliv_id,
        )

    def log_comment(
        self,
        event_type: AutotestEventType,
        *,
        commit_url: str,
        user_name: str,
        deliv_id: str | None,
        detail: str = "",
    ) -> None:
        """Log a comment outcome.

        Parameters
        ----------
        event_type
            One of the ``autotest.comment.*`` events.
        commit_url
            Commit the request refers to.
        user_name
            Requesting user.
        deliv_id
            Resolved deliverable, or ``None`` when resolution failed.
        detail
            Free-form suffix such as a retry delay or failure reason.

        """
        failed = event_type in {
            AutotestEventType.COMMENT_FAILED,
            AutotestEventType.COMMENT_RECHECK_FAILED,
        }
        emit = log_warning if failed else log_info
        emit(
            logger,
            "[%s] commit_url=%s user=%s deliv_id=%s %s",
            event_type,
            commit_url,
            user_name,
            deliv_id,
            detail,
        )

    def log_task_registered(self, *, task_name: str, fire_time: dt.datetime) -> None:
        """Log a task accepted by the scheduler."""
        log_info(
            logger,
            "[%s] task=%s fire_time=%s",
            AutotestEventType.TASK_REGISTERED,
            task_name,
            fire_time.isoformat(),
        )

    def log_task_rejected(self, *, task_name: str, reason: str) -> None:
        """Log a registration the scheduler refused."""
        log_warning(
            logger,
            "[%s] task=%s reason=%s",
            AutotestEventType.TASK_REJECTED,
            task_name,
            reason,
        )

    def log_task_fired(self, *, task_name: str) -> None:
        """Log a task whose callback completed."""
        log_info(logger, "[%s] task=%s", AutotestEventType.TASK_FIRED, task_name)

    def log_task_failed(self, *, task_name: str, error: BaseException) -> None:
        """Log a task whose callback raised."""
        log_error(
            logger,
            "[%s] task=%s error_type=%s error_message=%s",
            AutotestEventType.TASK_FAILED,
            task_name,
            type(error).__name__,
            str(error),
            exc_info=error,
        )

    def log_task_cancelled(self, *, task_name: str) -> None:
        """Log a cancelled task."""
        log_info(logger, "[%s] task=%s", AutotestEventType.TASK_CANCELLED, task_name)
