"""Error taxonomy for the autotest orchestration core.

``EventValidationError`` is raised before any store write, ``PersistenceError``
aborts the current request, ``DispatchError`` reports a failed enqueue and
``ConfigurationError`` is always fatal. Publish failures are reported as a
``False`` return from the publisher rather than raised.
"""

from __future__ import annotations


class AutotestError(Exception):
    """Base class for all autotest errors."""


class EventValidationError(AutotestError):
    """Raised when an inbound event is missing or has malformed fields.

    Attributes
    ----------
    reason
        Human-readable description of the problem.
    field
        Name of the offending field, when known.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Record the reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)

    @classmethod
    def missing(cls, field: str) -> EventValidationError:
        """Return an error for a required field that is empty."""
        return cls("is required", field=field)

    @classmethod
    def naive_timestamp(cls, field: str) -> EventValidationError:
        """Return an error for a timestamp without timezone information."""
        return cls("must be timezone-aware", field=field)


class PersistenceError(AutotestError):
    """Raised when a Result Store read or write fails."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        """Initialise with a message and the failing store operation."""
        self.operation = operation
        super().__init__(message)

    @classmethod
    def for_operation(cls, operation: str, detail: object) -> PersistenceError:
        """Return an error describing a failed store operation."""
        return cls(f"store operation {operation} failed: {detail}", operation=operation)


class DuplicateRecordError(PersistenceError):
    """Raised when a CommitRecord already exists for a key."""

    def __init__(self, commit_url: str, deliv_id: str) -> None:
        """Record the duplicated key."""
        self.commit_url = commit_url
        self.deliv_id = deliv_id
        super().__init__(
            f"output record already exists for {commit_url} ({deliv_id})",
            operation="save_output_record",
        )


class RequestAlreadyResolvedError(PersistenceError):
    """Raised when a deferred feedback request already has a resolution."""

    def __init__(self, commit_url: str, deliv_id: str, user_name: str) -> None:
        """Record the settled request."""
        self.commit_url = commit_url
        self.deliv_id = deliv_id
        self.user_name = user_name
        super().__init__(
            f"request by {user_name} for {commit_url} ({deliv_id}) "
            "is already resolved",
            operation="save_request_resolution",
        )


class DispatchError(AutotestError):
    """Raised when a test job could not be enqueued."""

    @classmethod
    def enqueue_failed(cls, commit_url: str, deliv_id: str) -> DispatchError:
        """Return an error for a job the queue refused."""
        return cls(f"failed to enqueue {commit_url} for {deliv_id}")


class ConfigurationError(AutotestError):
    """Raised for invalid configuration or operations the configuration forbids."""

    @classmethod
    def invalid_value(cls, env_var: str, raw: str, expected: str) -> ConfigurationError:
        """Return an error for an environment variable with a bad value."""
        return cls(f"{env_var} must be {expected}, got: {raw!r}")

    @classmethod
    def missing(cls, env_var: str) -> ConfigurationError:
        """Return an error for a required environment variable."""
        return cls(f"{env_var} is required")

    @classmethod
    def no_broker(cls, stub_env_var: str) -> ConfigurationError:
        """Return an error for a process with no Dramatiq broker."""
        return cls(
            "no Dramatiq broker is configured; "
            f"set {stub_env_var}=1 to use an in-memory stub for local runs"
        )

    @classmethod
    def clear_forbidden(cls, backend: str, instance: str) -> ConfigurationError:
        """Return an error for ``clear_data`` outside a test instance."""
        return cls(
            f"{backend}.clear_data() can only be called on test instances "
            f"(instance={instance!r})"
        )


__all__ = [
    "AutotestError",
    "ConfigurationError",
    "DispatchError",
    "DuplicateRecordError",
    "EventValidationError",
    "PersistenceError",
    "RequestAlreadyResolvedError",
]
