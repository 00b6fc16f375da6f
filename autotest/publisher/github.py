"""GitHub commit-comment implementation of :class:`FeedbackPublisher`."""

from __future__ import annotations

import dataclasses as dc
import re
import typing as typ
from urllib.parse import urlsplit

import httpx

from autotest.common.time import utcnow
from autotest.logging import get_logger, log_info, log_warning

from .protocol import FeedbackMessage

if typ.TYPE_CHECKING:
    from autotest.config import AutotestConfig

logger = get_logger(__name__)

_COMMIT_PATH = re.compile(
    r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+)/commit/(?P<sha>[0-9A-Fa-f]+)/?$"
)

@dc.dataclass(frozen=True, slots=True)
class GitHubPublisherConfig:
    """Configuration for posting commit comments."""

    token: str | None = None
    api_url: str = "https://api.github.com"
    postback: bool = False
    # transport timeout of the owned client; callers add none of their own
    timeout_s: float = 20.0
    user_agent: str = "autotest/0.1"

    @classmethod
    def from_config(cls, config: AutotestConfig) -> GitHubPublisherConfig:
        """Build publisher settings from the instance configuration."""
        return cls(
            token=config.github_token,
            api_url=config.github_api_url,
            postback=config.postback,
        )


def _is_web_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def comments_endpoint(api_url: str, commit_url: str) -> str | None:
    """Return the commit-comments endpoint for a commit web URL.

    ``https://github.com/{owner}/{repo}/commit/{sha}`` maps to
    ``{api_url}/repos/{owner}/{repo}/commits/{sha}/comments``. Any other
    shape yields ``None``.
    """
    match = _COMMIT_PATH.match(urlsplit(commit_url).path)
    if match is None:
        return None
    root = api_url.rstrip("/")
    return (
        f"{root}/repos/{match['owner']}/{match['repo']}"
        f"/commits/{match['sha']}/comments"
    )


class GitHubFeedbackPublisher:
    """Post feedback as GitHub commit comments.

    With ``postback`` disabled no request is ever made; accepted messages are
    retained in :attr:`messages` so tests and dry runs can inspect them.
    """

    def __init__(
        self,
        config: GitHubPublisherConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the publisher with API settings and an optional client."""
        self._config = config
        self.messages: list[FeedbackMessage] = []
        headers = {
            "User-Agent": config.user_agent,
            "Accept": "application/vnd.github+json",
        }
        if config.token:
            headers["Authorization"] = f"token {config.token}"
        self._headers = headers
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_s)

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def post_markdown(self, target_url: str, markdown: str) -> bool:
        """Post ``markdown`` as a comment on the commit at ``target_url``."""
        if not _is_web_url(target_url):
            log_warning(logger, "Refusing to publish to invalid URL %r", target_url)
            return False
        if not markdown.strip():
            log_warning(logger, "Refusing to publish empty feedback to %s", target_url)
            return False

        if not self._config.postback:
            self.messages.append(
                FeedbackMessage(
                    target_url=target_url, markdown=markdown, created_at=utcnow()
                )
            )
            log_info(logger, "Postback disabled; retained feedback for %s", target_url)
            return True

        endpoint = comments_endpoint(self._config.api_url, target_url)
        if endpoint is None:
            log_warning(logger, "Cannot derive comments endpoint from %s", target_url)
            return False

        try:
            response = await self._client.post(
                endpoint, json={"body": markdown}, headers=self._headers
            )
        except httpx.HTTPError as exc:
            log_warning(logger, "Feedback post to %s failed: %s", endpoint, exc)
            return False

        if not response.is_success:
            log_warning(
                logger,
                "Feedback post to %s rejected with HTTP %d",
                endpoint,
                response.status_code,
            )
            return False
        log_info(logger, "Posted feedback to %s", target_url)
        return True
