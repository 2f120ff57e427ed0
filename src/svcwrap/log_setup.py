"""Logging setup for the service wrapper and the wrapped service."""

import logging

from rich.logging import RichHandler

from svcwrap.management.configuration import DEFAULT_LOG_PATTERN


# Handlers installed by setup_logging, replaced on the next call
_installed: list[logging.Handler] = []


def setup_logging(
    file: str | None = None,
    stdout: bool = True,
    verbose: bool = False,
    pattern: str | None = None,
    use_color: bool = True
) -> logging.Logger:
    """Configure the root logger sinks.

    Args:
        file: Append log records to this file (None = no file logging)
        stdout: Log to the console
        verbose: DEBUG level instead of INFO
        pattern: logging format string for plain text sinks
        use_color: Use Rich colored console output instead of plain text

    Returns:
        The root logger
    """
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    pattern = pattern or DEFAULT_LOG_PATTERN
    formatter = logging.Formatter(pattern, datefmt='%Y-%m-%d %H:%M:%S')

    if stdout:
        if use_color:
            console = RichHandler(
                show_time=True,
                show_level=True,
                show_path=False,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                log_time_format='%Y-%m-%d %H:%M:%S'
            )
            console.setFormatter(logging.Formatter('[%(name)s] %(message)s'))
        else:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
        _installed.append(console)

    if file:
        file_handler = logging.FileHandler(file, mode="a")
        file_handler.setFormatter(formatter)
        _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    return root


def set_level(level: str | int):
    """Set the root logger level from a name ('warning') or number.

    Raises:
        ValueError: unknown level name
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"unknown log level {level!r}")
        level = resolved
    logging.getLogger().setLevel(level)
