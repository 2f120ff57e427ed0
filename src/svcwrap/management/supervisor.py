"""Wait-or-kill supervision of the service execution context."""

import logging
import math
import time

from svcwrap.management.execution import ServiceThread
from svcwrap.management.stop_coordinator import StopCoordinator


SECOND = 1.0

_log = logging.getLogger("sup")


async def wait_or_kill(
    thread: ServiceThread,
    coordinator: StopCoordinator,
    stop_timeout: float,
    interval: float = SECOND
) -> bool:
    """Wait for the service thread, killing it if it outlives a stop request.

    Does a bounded join every ``interval`` seconds. As long as no stop has been
    signaled the thread may run forever. Once a stop is observed, the thread
    gets ``stop_timeout`` more seconds (a deadline taken at that observation)
    to finish before it is killed, so the kill lands between ``stop_timeout``
    and ``stop_timeout + interval`` after the stop was signaled.

    Args:
        thread: Running service thread
        coordinator: Stop coordinator whose signaled state starts the countdown
        stop_timeout: Grace period in seconds (validated > 0 at config time)
        interval: Join polling interval in seconds

    Returns:
        True if the thread terminated on its own, False if it had to be killed

    Raises:
        ServiceFault: the service's start() raised
    """
    while not await thread.join_async(interval):
        # thread still busy
        if not coordinator.is_signaled():
            continue

        # stop signaled, start the final countdown
        deadline = time.monotonic() + stop_timeout
        attempts = max(1, math.ceil(stop_timeout / interval))
        attempt = 0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if await thread.join_async(min(interval, remaining)):
                return True
            attempt += 1
            _log.debug(f"waiting for service to stop {attempt}/{attempts}")

        _log.error("stop timeout exhausted, killing service thread")
        thread.kill()
        return False
    return True
