"""Logging configuration helpers for the timelapse stream server."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s:%(funcName)s:%(lineno)d - %(message)s"


def _prepare_file_handler(log_file: Union[str, Path]) -> tuple[Optional[logging.Handler], Optional[str]]:
    """Create a file handler for the given path, returning an optional warning."""
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = Path.cwd() / log_path

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8"), None
    except OSError as exc:
        fallback_path = Path.cwd() / log_path.name
        try:
            handler = logging.FileHandler(fallback_path, encoding="utf-8")
        except OSError as fallback_exc:
            return None, (
                f"Failed to open log file at '{log_path}' "
                f"and fallback '{fallback_path}'. Reason: {fallback_exc}"
            )
        return handler, (
            f"Failed to open log file at '{log_path}'. Falling back to '{fallback_path}'. "
            f"Reason: {exc}"
        )


def configure_logging(
    logger_name: Optional[str] = None,
    *,
    debug: bool = False,
    log_file: Union[str, Path, None] = None,
    include_stream: bool = True,
) -> logging.Logger:
    """Configure application logging and return a ready-to-use logger.

    Parameters
    ----------
    logger_name:
        Name of the logger to return. Defaults to ``"timelapse_stream"`` when omitted.
    debug:
        Lower the level to ``DEBUG`` and include the calling function in each record.
    log_file:
        Optional path to a log file. ``None`` (default) logs to the stream only.
    include_stream:
        When ``True`` (default) attach a `logging.StreamHandler` for stdout feedback.
    """

    level = logging.DEBUG if debug else logging.INFO
    formatter = logging.Formatter(DEBUG_FORMAT if debug else DEFAULT_FORMAT)

    handlers: list[logging.Handler] = []
    pending_warning: Optional[str] = None
    if log_file:
        file_handler, pending_warning = _prepare_file_handler(log_file)
        if file_handler:
            handlers.append(file_handler)

    if include_stream:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # APScheduler logs every job execution at INFO.
    logging.getLogger("apscheduler").setLevel(logging.DEBUG if debug else logging.WARNING)

    logger = logging.getLogger(logger_name or "timelapse_stream")
    logger.setLevel(level)

    if pending_warning:
        logger.warning(pending_warning)

    return logger


__all__ = ["configure_logging"]
