"""FeedbackPublisher protocol for posting markdown to a commit.

Adapters return ``True`` only when the remote service confirmed the post (or
when publishing is disabled and the message was retained locally). They never
raise for remote failures; callers decide what a ``False`` means.

Usage
-----
>>> from autotest.publisher import FeedbackPublisher, GitHubFeedbackPublisher
>>> isinstance(GitHubFeedbackPublisher(GitHubPublisherConfig()), FeedbackPublisher)
True

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ


@dc.dataclass(frozen=True, slots=True)
class FeedbackMessage:
    """A markdown message that was (or would have been) posted.

    Attributes
    ----------
    target_url
        Commit URL the message is attached to.
    markdown
        Message body.
    created_at
        Time the publisher accepted the message.

    """

    target_url: str
    markdown: str
    created_at: dt.datetime


@typ.runtime_checkable
class FeedbackPublisher(typ.Protocol):
    """Protocol for delivering feedback to the code host."""

    async def post_markdown(self, target_url: str, markdown: str) -> bool:
        """Post ``markdown`` as a comment on ``target_url``.

        Returns
        -------
        bool
            ``True`` on confirmed delivery, ``False`` otherwise.

        """
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...
