"""Markdown bodies for feedback, denial, timeout and usage notices.

Usage
-----
>>> from autotest.markdown import render_feedback_markdown
>>> body = render_feedback_markdown(record, user_name="octocat")

"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

    from autotest.models import CommitRecord

_STATE_LABELS: dict[str, str] = {
    "success": "Passed",
    "fail": "Failed",
    "failure": "Failed",
    "error": "Error",
    "timeout": "Timed out",
}


def format_duration(value: dt.timedelta) -> str:
    """Render a positive duration as ``"1h 5m"``-style text.

    Durations shorter than a minute are rounded up to one minute.
    """
    total_minutes = max(1, -(-int(value.total_seconds()) // 60))
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts)


def _mention(user_name: str) -> str:
    return f"@{user_name}"


def render_feedback_markdown(record: CommitRecord, *, user_name: str) -> str:
    """Render the feedback post for a stored test result."""
    output = record.output
    state = _STATE_LABELS.get(output.state, output.state)
    lines = [
        f"{_mention(user_name)}, feedback for `{record.deliv_id}`:",
        "",
        f"**Result:** {state}",
    ]
    if output.score is not None:
        lines.append(f"**Score:** {output.score:g}")
    lines.append("")
    if output.feedback.strip():
        lines.append(output.feedback.strip())
        lines.append("")
    lines.append(f"*Commit {record.commit[:7]}*")
    return "\n".join(lines)


def render_denial_markdown(
    *, user_name: str, deliv_id: str, retry_after: dt.timedelta
) -> str:
    """Render the notice for a request made during the cooldown."""
    return (
        f"{_mention(user_name)}, you have already received feedback for "
        f"`{deliv_id}` recently. You can request feedback again in "
        f"{format_duration(retry_after)}."
    )


def render_timeout_markdown(*, user_name: str, deliv_id: str) -> str:
    """Render the notice for a request whose test never completed."""
    return (
        f"{_mention(user_name)}, testing for `{deliv_id}` could not be "
        "completed in time. Please request feedback again later."
    )


def render_usage_markdown(*, user_name: str) -> str:
    """Render the notice for a request naming no known deliverable."""
    return (
        f"{_mention(user_name)}, I could not tell which deliverable you want "
        "feedback for. Mention the deliverable id in your comment, "
        "for example `@autotest #d1`."
    )


__all__ = [
    "format_duration",
    "render_denial_markdown",
    "render_feedback_markdown",
    "render_timeout_markdown",
    "render_usage_markdown",
]
