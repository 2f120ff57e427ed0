"""Wait and condition helpers for tests.

Reduces flakiness from fixed sleep times in tests.
"""

import logging
import time
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 10.0,
    poll_interval: float = 0.05,
    error_message: str = "Condition not met within timeout"
) -> bool:
    """Wait for a condition to become true.

    Returns:
        True if condition met, False if timeout

    Example:
        wait_for_condition(lambda: pid_file.exists(), timeout=5.0)
    """
    deadline = time.monotonic() + timeout

    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(poll_interval)

    logger.warning(f"{error_message} (timeout after {timeout}s)")
    return False


def wait_for_text(path: str | Path, text: str, timeout: float = 10.0) -> bool:
    """Wait until ``text`` appears in the file at ``path``."""
    path = Path(path)
    return wait_for_condition(
        lambda: path.exists() and text in path.read_text(),
        timeout=timeout,
        error_message=f"'{text}' not found in {path}"
    )
