"""Dramatiq actor that runs one container job and records its result.

The actor posts the ``ContainerInput`` to the external runner at
``AUTOTEST_RUNNER_URL``, decodes the returned ``TestOutput`` and hands the
resulting ``CommitRecord`` to the comment orchestrator, which stores it and
delivers any feedback request that was waiting on it.

Usage
-----
>>> run_container_job.send(msgspec.to_builtins(container_input))

"""

from __future__ import annotations

import asyncio
import typing as typ

import dramatiq
import httpx
import msgspec

from autotest.common.time import utcnow
from autotest.config import AutotestConfig
from autotest.errors import ConfigurationError
from autotest.logging import get_logger, log_error, log_info
from autotest.models import CommitRecord, ContainerInput, TestOutput
from autotest.queue._broker import ensure_broker_configured

if typ.TYPE_CHECKING:
    from autotest.factory import AutotestEngine

logger = get_logger(__name__)

# Container runs include building and testing student code.
_RUNNER_TIMEOUT_S = 600.0


async def _call_runner(
    client: httpx.AsyncClient, runner_url: str, job: ContainerInput
) -> TestOutput:
    response = await client.post(
        runner_url,
        content=msgspec.json.encode(job),
        headers={"Content-Type": "application/json"},
    )
    response.raise_for_status()
    return msgspec.json.decode(response.content, type=TestOutput)


async def run_job(
    payload: dict[str, typ.Any],
    config: AutotestConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    engine: AutotestEngine | None = None,
) -> CommitRecord:
    """Execute one container job end to end.

    Parameters
    ----------
    payload
        ``ContainerInput`` as msgspec builtins.
    config
        Instance configuration; ``runner_url`` must be set.
    http_client
        Optional client used to reach the runner.
    engine
        Optional running engine. When omitted one is built from ``config``
        and closed once the result is recorded.

    Returns
    -------
    CommitRecord
        The record handed to the orchestrator.

    Raises
    ------
    ConfigurationError
        If no runner URL is configured.
    httpx.HTTPError
        If the runner could not be reached or rejected the job; Dramatiq
        retries the message.

    """
    if not config.runner_url:
        raise ConfigurationError.missing("AUTOTEST_RUNNER_URL")
    job = msgspec.convert(payload, ContainerInput)

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=_RUNNER_TIMEOUT_S)
    try:
        output = await _call_runner(client, config.runner_url, job)
    except httpx.HTTPError as exc:
        log_error(
            logger,
            "Runner failed for %s (%s): %s",
            job.commit_url,
            job.deliv_id,
            exc,
        )
        raise
    finally:
        if owns_client:
            await client.aclose()

    record = CommitRecord(
        commit_url=job.commit_url,
        deliv_id=job.deliv_id,
        course_id=job.course_id,
        commit=job.push.commit,
        output=output,
        produced_at=utcnow(),
    )

    if engine is not None:
        await engine.orchestrator.on_test_result(record)
    else:
        from autotest.factory import build_engine

        async with await build_engine(config) as built:
            await built.orchestrator.on_test_result(record)
    log_info(logger, "Recorded result for %s (%s)", job.commit_url, job.deliv_id)
    return record


ensure_broker_configured()


@dramatiq.actor(max_retries=3)
def run_container_job(payload: dict[str, typ.Any]) -> None:
    """Dramatiq actor running a single container job.

    Parameters
    ----------
    payload
        ``ContainerInput`` encoded with ``msgspec.to_builtins``.

    """
    asyncio.run(run_job(payload, AutotestConfig.from_env()))
