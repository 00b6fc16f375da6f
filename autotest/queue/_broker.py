"""Dramatiq broker selection for the container-job actor.

A broker Dramatiq can already provide is always used. When there is none, a
``StubBroker`` is installed under pytest or when ``AUTOTEST_ALLOW_STUB_BROKER``
is truthy; any other process fails while declaring the actor.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

from autotest.errors import ConfigurationError

STUB_BROKER_ENV = "AUTOTEST_ALLOW_STUB_BROKER"
_PYTEST_ENV_VARS = ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS")
_TRUTHY = frozenset({"1", "true", "yes", "on"})

_install_lock = threading.Lock()


def stub_broker_allowed() -> bool:
    """Return whether a ``StubBroker`` may stand in for a missing broker."""
    if os.environ.get(STUB_BROKER_ENV, "").strip().lower() in _TRUTHY:
        return True
    return "pytest" in sys.modules or any(
        name in os.environ for name in _PYTEST_ENV_VARS
    )


def _current_broker() -> dramatiq.Broker | None:
    try:  # pragma: no cover - depends on installed broker extras
        return dramatiq.get_broker()
    except (ImportError, LookupError):
        return None


def ensure_broker_configured() -> None:
    """Make sure Dramatiq has a global broker before actors are declared.

    Raises
    ------
    ConfigurationError
        If no broker exists and a stub is not allowed.

    """
    # worker threads may race to declare actors on first import
    with _install_lock:
        if _current_broker() is not None:
            return
        if not stub_broker_allowed():
            raise ConfigurationError.no_broker(STUB_BROKER_ENV)
        dramatiq.set_broker(StubBroker())


__all__ = ["STUB_BROKER_ENV", "ensure_broker_configured", "stub_broker_allowed"]
