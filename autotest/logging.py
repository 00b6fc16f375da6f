"""femtologging setup and the ``log_*`` helpers every autotest module uses.

Templates are interpolated here, so femtologging only ever receives a
finished string. A template logged without arguments is passed through
untouched, which keeps literal ``%`` signs intact.

Example:
>>> from autotest.logging import get_logger, log_info
>>> logger = get_logger(__name__)
>>> log_info(logger, "queued %s for %s", "abc123", "d1")

"""

from __future__ import annotations

import typing as typ

from femtologging import basicConfig, get_logger

DEFAULT_LEVEL = "INFO"

# femtologging accepts both spellings of the warning level.
LEVEL_NAMES: frozenset[str] = frozenset(
    {"TRACE", "DEBUG", "INFO", "WARN", "WARNING", "ERROR", "CRITICAL"}
)


class LogTarget(typ.Protocol):
    """The subset of a femtologging logger the helpers call."""

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str | None: ...


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Map a raw ``AUTOTEST_LOG_LEVEL`` value onto a femtologging level.

    Parameters
    ----------
    level : str | None
        Value as read from the environment, in any case.

    Returns
    -------
    tuple[str, bool]
        The level to apply and whether ``level`` was unusable, in which case
        the level is ``DEFAULT_LEVEL``.

    """
    candidate = (level or "").strip().upper()
    if candidate in LEVEL_NAMES:
        return (candidate, False)
    return (DEFAULT_LEVEL, True)


def configure_logging(level: str, *, force: bool = False) -> tuple[str, bool]:
    """Install the femtologging root handler and report the applied level."""
    applied, invalid = normalize_log_level(level)
    basicConfig(level=applied, force=force)
    return (applied, invalid)


def _emit(
    logger: LogTarget,
    level: str,
    template: str,
    args: tuple[object, ...],
    exc_info: object | None,
) -> None:
    message = template % args if args else template
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_info(
    logger: LogTarget,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at INFO."""
    _emit(logger, "INFO", template, args, exc_info)


def log_warning(
    logger: LogTarget,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at WARNING."""
    _emit(logger, "WARNING", template, args, exc_info)


def log_error(
    logger: LogTarget,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at ERROR."""
    _emit(logger, "ERROR", template, args, exc_info)


__all__ = [
    "DEFAULT_LEVEL",
    "LEVEL_NAMES",
    "LogTarget",
    "configure_logging",
    "get_logger",
    "log_error",
    "log_info",
    "log_warning",
    "normalize_log_level",
]
