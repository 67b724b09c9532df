"""Logging helpers built on femtologging.

Adapters obtain loggers through :func:`get_logger` and emit records through
the ``log_*`` helpers so formatting stays consistent across backends.
Applications own logging configuration; :func:`configure_logging` is provided
for scripts and tests.

Examples
--------
>>> level, used_default = configure_logging("DEBUG")
>>> log_debug(get_logger(__name__), "Sending %s request", "anthropic")
"""

from __future__ import annotations

import enum
import os
import typing as typ
import warnings

from femtologging import basicConfig, get_logger

LOG_LEVEL_ENV = "POLYLLM_LOG_LEVEL"


class LogLevel(enum.StrEnum):
    """Log levels understood by femtologging."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _normalise_level(level: str | None) -> tuple[LogLevel, bool]:
    """Map a requested level name onto :class:`LogLevel`."""
    requested = level.strip().upper() if level else None
    if not requested or requested not in LogLevel.__members__:
        return LogLevel.INFO, True
    normalised = LogLevel(requested)
    if normalised is LogLevel.WARN:
        warnings.warn(
            "LogLevel.WARN is deprecated; use LogLevel.WARNING instead.",
            DeprecationWarning,
            stacklevel=3,
        )
        normalised = LogLevel.WARNING
    return normalised, False


def configure_logging(level: str | None, *, force: bool = False) -> tuple[str, bool]:
    """Configure femtologging and return the effective level.

    Parameters
    ----------
    level : str | None
        Requested level name. ``None``, blank or unknown names fall back to
        ``INFO``.
    force : bool, optional
        Replace handlers installed by an earlier configuration.

    Returns
    -------
    tuple[str, bool]
        ``(effective_level, used_default)``.
    """
    normalised, used_default = _normalise_level(level)
    basicConfig(level=normalised, force=force)
    return (normalised, used_default)


def configure_logging_from_environment(*, force: bool = False) -> tuple[str, bool]:
    """Configure logging from the ``POLYLLM_LOG_LEVEL`` environment variable."""
    return configure_logging(os.getenv(LOG_LEVEL_ENV), force=force)


class _SupportsLog(typ.Protocol):
    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None: ...


def _emit(
    logger: _SupportsLog,
    level: LogLevel,
    template: str,
    args: tuple[object, ...],
    exc_info: object | None,
) -> None:
    message = template % args if args else template
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_debug(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Format and emit a DEBUG record using percent-style ``template``."""
    _emit(logger, LogLevel.DEBUG, template, args, exc_info)


def log_info(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Format and emit an INFO record using percent-style ``template``."""
    _emit(logger, LogLevel.INFO, template, args, exc_info)


def log_warning(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Format and emit a WARNING record using percent-style ``template``."""
    _emit(logger, LogLevel.WARNING, template, args, exc_info)


def log_error(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Format and emit an ERROR record.

    Parameters
    ----------
    logger : _SupportsLog
        Logger supporting the femtologging ``log`` API.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception information attached to the record.

    Raises
    ------
    TypeError
        If ``template`` and ``args`` do not align.
    """
    _emit(logger, LogLevel.ERROR, template, args, exc_info)


__all__ = (
    "LOG_LEVEL_ENV",
    "LogLevel",
    "configure_logging",
    "configure_logging_from_environment",
    "get_logger",
    "log_debug",
    "log_error",
    "log_info",
    "log_warning",
)
