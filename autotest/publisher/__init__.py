"""Feedback publishing port and the GitHub adapter."""

from __future__ import annotations

from .github import GitHubFeedbackPublisher, GitHubPublisherConfig, comments_endpoint
from .protocol import FeedbackMessage, FeedbackPublisher

__all__ = [
    "FeedbackMessage",
    "FeedbackPublisher",
    "GitHubFeedbackPublisher",
    "GitHubPublisherConfig",
    "comments_endpoint",
]
