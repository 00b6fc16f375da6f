"""Tests for the GitHub commit-comment publisher."""

from __future__ import annotations

import json
import typing as typ

import httpx
import pytest

from autotest.config import AutotestConfig
from autotest.publisher import (
    FeedbackPublisher,
    GitHubFeedbackPublisher,
    GitHubPublisherConfig,
    comments_endpoint,
)
from tests.helpers.builders import COMMIT_URL

API = "https://api.github.test"
ENDPOINT = f"{API}/repos/cs310/project_team01/commits/abc1234def/comments"


def _publisher(
    handler: typ.Callable[[httpx.Request], httpx.Response],
    *,
    token: str | None = "secret",
) -> tuple[GitHubFeedbackPublisher, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = GitHubPublisherConfig(token=token, api_url=API, postback=True)
    return GitHubFeedbackPublisher(config, http_client=client), client


@pytest.mark.parametrize(
    ("commit_url", "expected"),
    [
        pytest.param(COMMIT_URL, ENDPOINT, id="commit"),
        pytest.param(f"{COMMIT_URL}/", ENDPOINT, id="trailing_slash"),
        pytest.param("https://github.com/cs310/project_team01", None, id="project"),
        pytest.param(
            "https://github.com/cs310/project_team01/commit/not-a-sha",
            None,
            id="bad_sha",
        ),
    ],
)
def test_comments_endpoint(commit_url: str, expected: str | None) -> None:
    """Commit web URLs map onto the commit comments API."""
    assert comments_endpoint(f"{API}/", commit_url) == expected


def test_config_from_instance_config() -> None:
    """Publisher settings come from the instance configuration."""
    config = AutotestConfig(postback=True, github_token="tok", github_api_url=API)
    publisher_config = GitHubPublisherConfig.from_config(config)
    assert publisher_config.token == "tok"
    assert publisher_config.api_url == API
    assert publisher_config.postback is True


@pytest.mark.asyncio
async def test_posts_comment_with_headers() -> None:
    """A successful post sends the body and authentication headers."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 1})

    publisher, client = _publisher(handler)
    async with client:
        assert isinstance(publisher, FeedbackPublisher)
        assert await publisher.post_markdown(COMMIT_URL, "**Passed**") is True

    (request,) = seen
    assert str(request.url) == ENDPOINT
    assert request.method == "POST"
    assert request.headers["Authorization"] == "token secret"
    assert request.headers["Accept"] == "application/vnd.github+json"
    assert json.loads(request.content) == {"body": "**Passed**"}
    assert publisher.messages == []


@pytest.mark.asyncio
async def test_anonymous_requests_omit_authorization() -> None:
    """Without a token no Authorization header is sent."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    publisher, client = _publisher(handler, token=None)
    async with client:
        await publisher.post_markdown(COMMIT_URL, "body")

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [102, 304, 403, 422, 500])
async def test_rejected_posts_return_false(status: int) -> None:
    """Non-2xx responses report failure."""
    publisher, client = _publisher(lambda _: httpx.Response(status))
    async with client:
        assert await publisher.post_markdown(COMMIT_URL, "body") is False


@pytest.mark.asyncio
async def test_transport_errors_return_false() -> None:
    """Network failures report failure instead of raising."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    publisher, client = _publisher(handler)
    async with client:
        assert await publisher.post_markdown(COMMIT_URL, "body") is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("target_url", "markdown"),
    [
        pytest.param("not a url", "body", id="invalid_url"),
        pytest.param(COMMIT_URL, "   ", id="empty_body"),
        pytest.param("https://github.com/cs310", "body", id="no_endpoint"),
    ],
)
async def test_invalid_input_makes_no_request(target_url: str, markdown: str) -> None:
    """Unpostable input fails without touching the network."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201)

    publisher, client = _publisher(handler)
    async with client:
        assert await publisher.post_markdown(target_url, markdown) is False
    assert calls == []


@pytest.mark.asyncio
async def test_postback_disabled_retains_messages() -> None:
    """With postback off messages are kept locally and reported as posted."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    publisher = GitHubFeedbackPublisher(
        GitHubPublisherConfig(api_url=API), http_client=client
    )
    async with client:
        assert await publisher.post_markdown(COMMIT_URL, "hello") is True

    assert calls == []
    (message,) = publisher.messages
    assert message.target_url == COMMIT_URL
    assert message.markdown == "hello"
    assert message.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_injected_client_is_not_closed() -> None:
    """Only clients the publisher created are closed by aclose."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(httpx.Response))
    publisher = GitHubFeedbackPublisher(GitHubPublisherConfig(), http_client=client)
    await publisher.aclose()
    assert not client.is_closed
    await client.aclose()
