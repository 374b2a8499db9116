"""Logging bootstrap for CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.config import Settings
from ..util.log import Log, LogFormat, LogLevel


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    file: bool


def resolve_log_settings(
    settings: Settings,
    *,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
) -> LogSettings:
    """Command line flags win over the ``logging`` settings."""
    cfg = settings.logging

    use_console = console
    if use_console is None:
        use_console = cfg.console if cfg.console is not None else False

    return LogSettings(
        level=LogLevel.parse(level or cfg.level),
        format=LogFormat.parse(format or cfg.format),
        console=use_console,
        file=True if file is None else file,
    )


def bootstrap_logging(
    settings: Settings,
    *,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
) -> LogSettings:
    """Resolve logging settings and initialize the process logger."""
    resolved = resolve_log_settings(settings, level=level, format=format, console=console, file=file)
    Log.configure(
        level=resolved.level,
        format=resolved.format,
        console=resolved.console,
        file=resolved.file,
    )
    return resolved
