"""Logging for Holodeck.

Records go through loguru and stay silent until a sink is installed.
``configure_logging`` installs the sinks described by the ``[log]``
table of ``holodeck.toml``; ``AWSProvider`` calls it when that table is
present. In CI the console sink drops colors and timestamps, since the
job log already stamps every line.

Example:
    from holodeck.logging import LogConfig, configure_logging

    configure_logging(LogConfig(level="DEBUG", file="holodeck.log"))
    provider.create()
    configure_logging(None)  # flush and remove the sinks
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from holodeck.loading import is_interactive

logger.disable("holodeck")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

TERMINAL_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan> {message}"
)
CI_FORMAT = "{level: <7} {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function}:{line} | {message}"

_installed: list[int] = []


@dataclass(frozen=True, slots=True)
class LogConfig:
    """The ``[log]`` table.

    Attributes:
        level: Minimum level printed to stderr.
        file: Log file receiving every record at DEBUG.
        console: Whether to print to stderr at all.
        rotation: When the log file rolls over, e.g. "50 MB".
        retention: Rolled files kept.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Add the sinks described by ``config`` and return their handler ids."""
    logger.enable("holodeck")
    handler_ids: list[int] = []

    if config.console:
        interactive = is_interactive()
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=TERMINAL_FORMAT if interactive else CI_FORMAT,
                colorize=interactive,
                filter="holodeck",
            )
        )

    if config.file:
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                # AWS request parameters must not leak into tracebacks
                diagnose=False,
                enqueue=True,
                filter="holodeck",
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers, flushing queued file records, and silence the package."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("holodeck")


def configure_logging(config: LogConfig | None) -> None:
    """Replace the sinks installed by a previous call; ``None`` only removes them."""
    teardown_logging(_installed)
    _installed.clear()
    if config is not None:
        _installed.extend(setup_logging(config))
