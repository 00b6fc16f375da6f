"""Behavioural tests shared by every ResultStore adapter."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
import pytest_asyncio

from autotest.errors import (
    ConfigurationError,
    DuplicateRecordError,
    RequestAlreadyResolvedError,
)
from autotest.models import (
    ContainerInput,
    FeedbackGiven,
    RequestResolution,
    RequestState,
)
from autotest.store import DatabaseResultStore, FileResultStore, ResultStore
from tests.helpers.builders import (
    BASE_TIME,
    COMMIT_URL,
    comment_event,
    commit_record,
    push_event,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _grant(
    *,
    user_name: str = "student1",
    deliv_id: str = "d1",
    commit_url: str = COMMIT_URL,
    at: dt.datetime = BASE_TIME,
) -> FeedbackGiven:
    return FeedbackGiven(
        course_id="cs310",
        deliv_id=deliv_id,
        user_name=user_name,
        commit_url=commit_url,
        timestamp=at,
    )


def _build(
    backend: str,
    instance: str,
    tmp_path: Path,
    session_factory: async_sessionmaker[AsyncSession],
) -> ResultStore:
    if backend == "file":
        return FileResultStore(tmp_path / "store", instance=instance)
    return DatabaseResultStore(session_factory, instance=instance)


@pytest.fixture(params=["file", "database"])
def backend(request: pytest.FixtureRequest) -> str:
    """Name the adapter under test."""
    return request.param


@pytest_asyncio.fixture
async def store(
    backend: str,
    tmp_path: Path,
    session_factory: async_sessionmaker[AsyncSession],
) -> typ.AsyncIterator[ResultStore]:
    """Yield an empty store belonging to a test instance."""
    result_store = _build(backend, "test", tmp_path, session_factory)
    try:
        yield result_store
    finally:
        await result_store.aclose()


@pytest.mark.asyncio
async def test_adapters_satisfy_protocol(store: ResultStore) -> None:
    """Both adapters are runtime ResultStore instances."""
    assert isinstance(store, ResultStore)


@pytest.mark.asyncio
async def test_push_round_trip(store: ResultStore) -> None:
    """A saved push intent is found by commit URL and deliverable."""
    intent = ContainerInput(
        push=push_event(), course_id="cs310", deliv_id="d1", enqueued_at=BASE_TIME
    )
    await store.save_push(intent)

    assert await store.get_push_record(COMMIT_URL) == intent
    assert await store.get_push_record(COMMIT_URL, "d1") == intent
    assert await store.get_push_record(COMMIT_URL, "d2") is None
    assert await store.get_push_record("https://github.com/o/r/commit/x") is None


@pytest.mark.asyncio
async def test_comment_lookup_is_keyed_by_deliverable(store: ResultStore) -> None:
    """Pending requests are found only under their own deliverable."""
    request = comment_event(deliv_id="d2")
    await store.save_comment(request)

    assert await store.get_comment_record(COMMIT_URL, "d2") == request
    assert await store.get_comment_record(COMMIT_URL, "d1") is None


@pytest.mark.asyncio
async def test_comment_records_keep_arrival_order(store: ResultStore) -> None:
    """Every request for a key is listed, oldest first."""
    first = comment_event(user_name="student1")
    second = comment_event(
        user_name="student2", timestamp=BASE_TIME + dt.timedelta(minutes=1)
    )
    await store.save_comment(first)
    await store.save_comment(comment_event(deliv_id="d2"))
    await store.save_comment(second)

    assert await store.get_comment_records(COMMIT_URL, "d1") == [first, second]
    assert await store.get_comment_records(COMMIT_URL, "d3") == []


@pytest.mark.asyncio
async def test_request_is_resolved_once(store: ResultStore) -> None:
    """Only the first resolution of a request is kept."""
    request = comment_event()
    timed_out = RequestResolution.for_request(
        request, RequestState.TIMED_OUT, BASE_TIME + dt.timedelta(minutes=10)
    )
    await store.save_request_resolution(timed_out)

    with pytest.raises(RequestAlreadyResolvedError):
        await store.save_request_resolution(
            RequestResolution.for_request(
                request, RequestState.ANSWERED, BASE_TIME + dt.timedelta(minutes=11)
            )
        )

    assert await store.get_request_resolution(request) == timed_out
    later = comment_event(timestamp=BASE_TIME + dt.timedelta(hours=1))
    assert await store.get_request_resolution(later) is None
    assert await store.get_request_resolution(comment_event(user_name="x")) is None
    await store.save_request_resolution(
        RequestResolution.for_request(later, RequestState.ANSWERED, BASE_TIME)
    )


@pytest.mark.asyncio
async def test_output_records_are_unique_per_key(store: ResultStore) -> None:
    """A second result for the same commit and deliverable is rejected."""
    first = commit_record(feedback="first")
    await store.save_output_record(first)

    with pytest.raises(DuplicateRecordError):
        await store.save_output_record(commit_record(feedback="second"))

    await store.save_output_record(commit_record(deliv_id="d2"))
    assert await store.get_output_record(COMMIT_URL, "d1") == first
    stored_d2 = await store.get_output_record(COMMIT_URL, "d2")
    assert stored_d2 is not None
    assert stored_d2.deliv_id == "d2"


@pytest.mark.asyncio
async def test_latest_grant_has_greatest_timestamp(store: ResultStore) -> None:
    """Grant lookup returns the most recent timestamp, not the last write."""
    newest = _grant(at=BASE_TIME + dt.timedelta(hours=5))
    await store.save_feedback_given_record(_grant(at=BASE_TIME))
    await store.save_feedback_given_record(newest)
    await store.save_feedback_given_record(_grant(at=BASE_TIME + dt.timedelta(hours=1)))
    await store.save_feedback_given_record(_grant(user_name="student2"))

    assert await store.get_latest_feedback_given_record("cs310", "d1", "student1") == (
        newest
    )
    assert (
        await store.get_latest_feedback_given_record("cs310", "d2", "student1")
    ) is None


@pytest.mark.asyncio
async def test_grant_for_commit(store: ResultStore) -> None:
    """Grants are found per commit and user."""
    grant = _grant()
    await store.save_feedback_given_record(grant)

    assert await store.get_feedback_given_record_for_commit(COMMIT_URL, "student1") == (
        grant
    )
    assert (
        await store.get_feedback_given_record_for_commit(COMMIT_URL, "student2")
    ) is None


@pytest.mark.asyncio
async def test_snapshot_and_clear(store: ResultStore) -> None:
    """The debug snapshot lists every collection and clear empties them."""
    await store.save_push(
        ContainerInput(
            push=push_event(), course_id="cs310", deliv_id="d1", enqueued_at=BASE_TIME
        )
    )
    await store.save_comment(comment_event())
    await store.save_output_record(commit_record())
    await store.save_feedback_given_record(_grant())
    await store.save_request_resolution(
        RequestResolution.for_request(
            comment_event(), RequestState.ANSWERED, BASE_TIME
        )
    )

    snapshot = await store.get_all_data()
    assert len(snapshot.pushes) == 1
    assert len(snapshot.comments) == 1
    assert len(snapshot.records) == 1
    assert len(snapshot.feedback) == 1
    assert len(snapshot.resolutions) == 1

    await store.clear_data()
    cleared = await store.get_all_data()
    assert cleared.pushes == []
    assert cleared.records == []
    assert cleared.comments == []
    assert cleared.feedback == []
    assert cleared.resolutions == []


@pytest.mark.asyncio
async def test_clear_is_forbidden_outside_test_instances(
    backend: str,
    tmp_path: Path,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Production instances refuse to clear their data."""
    production = _build(backend, "default", tmp_path, session_factory)
    await production.save_output_record(commit_record())

    with pytest.raises(ConfigurationError, match="test instances"):
        await production.clear_data()

    assert await production.get_output_record(COMMIT_URL, "d1") is not None
