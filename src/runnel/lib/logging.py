"""Structlog setup for the CLI and for applications embedding runnel.

Library modules only call ``structlog.get_logger``. Until structlog is
configured, its defaults print every event, debug included, to stdout, where
it interleaves with captured child output. The CLI calls `configure_logging`;
embedding applications call `configure_library_logging` or install their own
structlog configuration.
"""

from __future__ import annotations

import logging as std_logging
import sys
from typing import Final

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

# Longest command line rendered on the console before it is elided.
MAX_CONSOLE_COMMAND_CHARS: Final[int] = 160


def _level_from_verbosity(verbosity: int) -> int:
    if verbosity <= 0:
        return std_logging.WARNING
    if verbosity == 1:
        return std_logging.INFO
    return std_logging.DEBUG


def shorten_command(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Elide long `command` and `argv` values so console events stay on one line."""

    command = event_dict.get("command")
    if isinstance(command, str) and len(command) > MAX_CONSOLE_COMMAND_CHARS:
        event_dict["command"] = f"{command[: MAX_CONSOLE_COMMAND_CHARS - 3]}..."
    argv = event_dict.get("argv")
    if isinstance(argv, list | tuple):
        joined = " ".join(str(part) for part in argv)
        if len(joined) > MAX_CONSOLE_COMMAND_CHARS:
            event_dict["argv"] = f"{joined[: MAX_CONSOLE_COMMAND_CHARS - 3]}..."
    return event_dict


def _processors(json_mode: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_mode:
        # JSON consumers get full argv lists and command lines.
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([shorten_command, structlog.dev.ConsoleRenderer()])
    return processors


def configure_library_logging(level: int = std_logging.WARNING, *, json_mode: bool = False) -> None:
    """Route runnel events at `level` and above to stderr.

    Leaves the stdlib root logger untouched, so it is safe to call from an
    application that configures stdlib logging itself.
    """

    structlog.configure(
        processors=_processors(json_mode),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_logging(json_mode: bool = False, verbosity: int = 0) -> None:
    """Configure stdlib and structlog logging for one CLI invocation."""

    level = _level_from_verbosity(verbosity)
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter("%(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler])

    structlog.configure(
        processors=_processors(json_mode),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
