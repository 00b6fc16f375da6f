"""Unit tests for event models, validation and decoding."""

from __future__ import annotations

import datetime as dt

import msgspec
import pytest

from autotest.errors import EventValidationError
from autotest.models import (
    CommentEvent,
    PushEvent,
    decode_event,
    validate_comment_event,
    validate_push_event,
)
from tests.helpers.builders import comment_event, push_event


class TestValidation:
    """Tests for validate_push_event and validate_comment_event."""

    def test_valid_events_pass_through(self) -> None:
        """Well-formed events are returned unchanged."""
        push = push_event()
        comment = comment_event()
        assert validate_push_event(push) is push
        assert validate_comment_event(comment) is comment

    @pytest.mark.parametrize(
        ("changes", "field"),
        [
            pytest.param({"repo": ""}, "repo", id="empty_repo"),
            pytest.param({"commit": "  "}, "commit", id="blank_commit"),
            pytest.param({"commit_url": "github.com/x"}, "commit_url", id="no_scheme"),
            pytest.param(
                {"timestamp": dt.datetime(2024, 9, 2, 12, 0)},  # noqa: DTZ001
                "timestamp",
                id="naive_timestamp",
            ),
        ],
    )
    def test_push_rejections_name_the_field(
        self, changes: dict[str, object], field: str
    ) -> None:
        """Each malformed push field is reported by name."""
        event = msgspec.structs.replace(push_event(), **changes)
        with pytest.raises(EventValidationError) as excinfo:
            validate_push_event(event)
        assert excinfo.value.field == field

    def test_comment_requires_user(self) -> None:
        """A feedback request must name its requester."""
        with pytest.raises(EventValidationError) as excinfo:
            validate_comment_event(comment_event(user_name=""))
        assert excinfo.value.field == "user_name"

    def test_comment_deliverable_is_optional(self) -> None:
        """The default deliverable policy applies when none is named."""
        event = comment_event(deliv_id=None)
        assert validate_comment_event(event).deliv_id is None


class TestDecodeEvent:
    """Tests for decode_event."""

    def test_decodes_push_json(self) -> None:
        """A JSON body decodes into a PushEvent with an aware timestamp."""
        body = msgspec.json.encode(push_event())
        event = decode_event(body, PushEvent)
        assert event == push_event()
        assert event.timestamp.tzinfo is not None

    def test_missing_field_raises_validation_error(self) -> None:
        """A body missing required fields is rejected."""
        with pytest.raises(EventValidationError, match="missing required field"):
            decode_event(b'{"repo": "r", "commit": "c"}', CommentEvent)

    def test_malformed_json_raises_validation_error(self) -> None:
        """Non-JSON bodies are rejected rather than crashing."""
        with pytest.raises(EventValidationError, match="malformed JSON"):
            decode_event(b"{not json", PushEvent)
