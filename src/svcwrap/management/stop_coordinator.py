"""Idempotent stop sequence shared by signal handlers and the service thread."""

import logging
import threading
from typing import Callable

from svcwrap.management.environment import Environment, process_env


class StopCoordinator:
    """Runs the service stop hook and raises the stopped flag exactly once.

    request_stop() may be called concurrently from signal dispatch threads and
    from the service thread when start() returns. The first caller claims the
    stop and performs the side effects; every other caller returns immediately.
    is_signaled() only turns True after the winning caller finished its side
    effects, so the supervisor never starts the grace countdown early.
    """

    def __init__(
        self,
        service_name: str,
        stop_hook: Callable[[], object] | None = None,
        environment: Environment | None = None
    ):
        self.service_name = service_name
        self.stop_hook = stop_hook
        self.environment = environment if environment is not None else process_env
        self.logger = logging.getLogger("stop")
        self._lock = threading.Lock()
        self._claimed = False
        self._signaled = False

    def request_stop(self) -> bool:
        """Trigger the stop sequence.

        Returns:
            True if this call performed the stop, False if a stop was already requested
        """
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True

        self.logger.info(f"stopping {self.service_name} service")
        try:
            if self.stop_hook is not None:
                self.stop_hook()
        finally:
            self.environment.set_stopped(True)
            with self._lock:
                self._signaled = True
        return True

    def is_signaled(self) -> bool:
        """True once a stop has been requested and its side effects are done."""
        with self._lock:
            return self._signaled
