"""Autotest runtime entrypoint.

This module provides the ASGI application factory used by Granian. The
application reads its configuration from ``AUTOTEST_*`` environment
variables and builds the orchestration engine on lifespan startup.

Server configuration is driven by environment variables:

- ``AUTOTEST_HOST``: Bind address (default ``0.0.0.0``)
- ``AUTOTEST_PORT``: Listen port (default ``8080``)
- ``AUTOTEST_LOG_LEVEL``: Log level (default ``INFO``)

Set ``AUTOTEST_HEALTH_ONLY=1`` to serve only ``/health`` and ``/ready``.

Run the service directly with ``python -m autotest.runtime``.
"""

from __future__ import annotations

import functools
import os
import typing as typ

from autotest.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

# TCP port number range limits
_MIN_PORT = 1
_MAX_PORT = 65535


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        log_error(
            logger,
            "Invalid AUTOTEST_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create the Falcon ASGI application from the environment.

    Returns
    -------
    falcon.asgi.App
        Full application with event endpoints, or a health-only one when
        ``AUTOTEST_HEALTH_ONLY`` is set.

    Raises
    ------
    ConfigurationError
        If the ``AUTOTEST_*`` configuration is invalid.

    """
    from autotest.api.app import AppDependencies
    from autotest.api.app import create_app as _create_api_app

    if os.environ.get("AUTOTEST_HEALTH_ONLY", "").lower() in {"1", "true", "yes"}:
        return _create_api_app()

    from autotest.config import AutotestConfig
    from autotest.factory import build_engine

    config = AutotestConfig.from_env()
    return _create_api_app(
        AppDependencies(build_engine=functools.partial(build_engine, config))
    )


def main() -> None:
    """Start the autotest runtime server using Granian.

    Reads ``AUTOTEST_HOST``, ``AUTOTEST_PORT`` and ``AUTOTEST_LOG_LEVEL`` from
    the environment and starts the ASGI server.
    """
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("AUTOTEST_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port = _parse_port(os.environ.get("AUTOTEST_PORT", "8080"))
    log_level_str = os.environ.get("AUTOTEST_LOG_LEVEL", "INFO")

    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid AUTOTEST_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting autotest runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "autotest.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
