"""Runtime configuration for the orchestration core.

``AutotestConfig`` enumerates every knob the core consumes: the storage
backend and its connection parameters, the default feedback interval, the
publish toggle, the test-instance marker and remote credentials.

Usage
-----
Build a configuration for a throwaway instance:

>>> config = AutotestConfig(instance="test", postback=False)
>>> config.is_test_instance
True

Or load it from the environment:

>>> import os
>>> os.environ["AUTOTEST_STORE_BACKEND"] = "database"
>>> os.environ["AUTOTEST_DATABASE_URL"] = "sqlite+aiosqlite:///autotest.db"
>>> AutotestConfig.from_env().store_backend
'database'

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os
import typing as typ
from pathlib import Path

from autotest.errors import ConfigurationError

StoreBackend = typ.Literal["file", "database"]

_VALID_BACKENDS: frozenset[str] = frozenset({"file", "database"})
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})
TEST_INSTANCE = "test"


@dc.dataclass(frozen=True, slots=True)
class AutotestConfig:
    """Configuration for one autotest instance.

    Attributes
    ----------
    instance
        Instance name. The value ``"test"`` marks an ephemeral instance on
        which ``clear_data`` is permitted.
    store_backend
        ``"file"`` for JSON-lines files or ``"database"`` for SQLAlchemy.
    persist_dir
        Directory used by the file backend.
    database_url
        SQLAlchemy async URL used by the database backend.
    postback
        When ``False`` feedback is retained locally instead of posted.
    github_token
        Token used to post commit comments.
    github_api_url
        Root of the GitHub REST API.
    catalogue_path
        Optional course catalogue YAML.
    feedback_interval
        Minimum interval between feedback posts when a deliverable does not
        define its own.
    recheck_interval
        Delay between re-checks for a deferred comment.
    max_rechecks
        Number of re-checks before a deferred comment times out.
    post_denials
        Whether quota denial notices are posted or only returned.
    runner_url
        Endpoint of the external container runner.
    log_level
        femtologging level name.

    """

    instance: str = "default"
    store_backend: StoreBackend = "file"
    persist_dir: Path = Path("data")
    database_url: str | None = None
    postback: bool = False
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    catalogue_path: Path | None = None
    feedback_interval: dt.timedelta = dt.timedelta(hours=12)
    recheck_interval: dt.timedelta = dt.timedelta(seconds=60)
    max_rechecks: int = 10
    post_denials: bool = True
    runner_url: str | None = None
    log_level: str = "INFO"

    @property
    def is_test_instance(self) -> bool:
        """Return whether destructive debug operations are permitted."""
        return self.instance == TEST_INSTANCE

    @property
    def in_flight_ttl(self) -> dt.timedelta:
        """Return how long an enqueued job may go without a result.

        A job still unanswered after the full re-check window is presumed
        lost, and the next push or comment for the key enqueues it again.
        """
        return self.recheck_interval * self.max_rechecks

    def __post_init__(self) -> None:
        """Reject combinations that cannot be wired at startup."""
        if self.store_backend not in _VALID_BACKENDS:
            raise ConfigurationError.invalid_value(
                "AUTOTEST_STORE_BACKEND",
                str(self.store_backend),
                "'file' or 'database'",
            )
        if self.store_backend == "database" and not self.database_url:
            raise ConfigurationError.missing("AUTOTEST_DATABASE_URL")
        if self.postback and not self.github_token:
            raise ConfigurationError.missing("AUTOTEST_GITHUB_TOKEN")
        if self.max_rechecks < 1:
            raise ConfigurationError.invalid_value(
                "AUTOTEST_MAX_RECHECKS", str(self.max_rechecks), "a positive integer"
            )

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigurationError.invalid_value(env_var, raw, "an integer") from exc
        if value < 1:
            raise ConfigurationError.invalid_value(env_var, raw, "positive")
        return value

    @staticmethod
    def _parse_bool(env_var: str, *, default: bool) -> bool:
        raw = os.environ.get(env_var, "").strip().lower()
        if not raw:
            return default
        if raw in _TRUTHY:
            return True
        if raw in _FALSY:
            return False
        raise ConfigurationError.invalid_value(env_var, raw, "a boolean")

    @staticmethod
    def _optional(env_var: str) -> str | None:
        raw = os.environ.get(env_var, "").strip()
        return raw or None

    @classmethod
    def from_env(cls) -> AutotestConfig:
        """Create configuration from ``AUTOTEST_*`` environment variables.

        Returns
        -------
        AutotestConfig
            Configuration with environment values applied over defaults.

        Raises
        ------
        ConfigurationError
            If a variable is malformed or a required one is missing.

        """
        backend = (os.environ.get("AUTOTEST_STORE_BACKEND") or "file").strip().lower()
        if backend not in _VALID_BACKENDS:
            raise ConfigurationError.invalid_value(
                "AUTOTEST_STORE_BACKEND", backend, "'file' or 'database'"
            )

        catalogue = cls._optional("AUTOTEST_CATALOGUE_PATH")
        interval_minutes = cls._parse_positive_int(
            "AUTOTEST_FEEDBACK_INTERVAL_MINUTES", 720
        )
        recheck_seconds = cls._parse_positive_int(
            "AUTOTEST_RECHECK_INTERVAL_SECONDS", 60
        )

        return cls(
            instance=cls._optional("AUTOTEST_INSTANCE") or "default",
            store_backend=typ.cast("StoreBackend", backend),
            persist_dir=Path(cls._optional("AUTOTEST_PERSIST_DIR") or "data"),
            database_url=cls._optional("AUTOTEST_DATABASE_URL"),
            postback=cls._parse_bool("AUTOTEST_POSTBACK", default=False),
            github_token=cls._optional("AUTOTEST_GITHUB_TOKEN"),
            github_api_url=cls._optional("AUTOTEST_GITHUB_API_URL")
            or "https://api.github.com",
            catalogue_path=Path(catalogue) if catalogue else None,
            feedback_interval=dt.timedelta(minutes=interval_minutes),
            recheck_interval=dt.timedelta(seconds=recheck_seconds),
            max_rechecks=cls._parse_positive_int("AUTOTEST_MAX_RECHECKS", 10),
            post_denials=cls._parse_bool("AUTOTEST_POST_DENIALS", default=True),
            runner_url=cls._optional("AUTOTEST_RUNNER_URL"),
            log_level=cls._optional("AUTOTEST_LOG_LEVEL") or "INFO",
        )
