"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys
from logging import Handler
from typing import Literal

from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "shell"]

_FORMATS: dict[LogProfile, str] = {
    "shell": "[{extra[node]}] {message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {extra[node]} | {name}:{function}:{line} | {message}",
}
_CONFIGURED_PROFILE: LogProfile | None = None


def _shell_handler() -> Handler:
    # Same console prompt_toolkit prints through.
    return RichHandler(
        console=get_console(),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def resolve_level(level: str | None = None) -> str:
    """``SUPERPOD_LOG_LEVEL`` wins over the configured level."""
    return (os.getenv("SUPERPOD_LOG_LEVEL") or level or "WARNING").upper()


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Install one sink for ``profile``; repeated calls with the same profile are no-ops."""
    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    logger.remove()
    # Records logged outside a session have no node bound.
    logger.configure(extra={"node": "-"})
    sink = _shell_handler() if profile == "shell" else sys.stderr
    logger.add(sink, level=resolve_level(level), format=_FORMATS[profile], backtrace=False, diagnose=False)
    _CONFIGURED_PROFILE = profile
