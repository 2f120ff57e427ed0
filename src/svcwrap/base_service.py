"""Service contract for the wrapper.

Any object with a blocking ``start()`` can be wrapped; ``stop()`` is optional.
BaseService is a convenience base class giving access to the stopped flag and
an exit-aware sleep, but it is not required.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from svcwrap.management.environment import Environment, process_env


_log = logging.getLogger("svc.base")


@dataclass(frozen=True)
class ServiceCapabilities:
    """What the wrapper can call on a service object.

    Attributes:
        start: Blocking run operation (required)
        stop: Optional stop hook, called from a thread other than the one running start()
        options_parser: Optional hook extending the command line parser
    """
    start: Callable[[], Any]
    stop: Callable[[], Any] | None = None
    options_parser: Callable[[Any], Any] | None = None

    @classmethod
    def of(cls, service: Any) -> "ServiceCapabilities":
        """Inspect ``service`` once, at composition time.

        Raises:
            TypeError: service has no callable start()
        """
        start = getattr(service, "start", None)
        if not callable(start):
            raise TypeError(
                f"{type(service).__name__} cannot be run as a service: "
                f"it must define a blocking start() method"
            )
        stop = getattr(service, "stop", None)
        options_parser = getattr(service, "options_parser", None)
        caps = cls(
            start=start,
            stop=stop if callable(stop) else None,
            options_parser=options_parser if callable(options_parser) else None,
        )
        _log.debug(
            f"{type(service).__name__}: stop hook {'present' if caps.stop else 'absent'}"
        )
        return caps


def default_service_name(service: Any) -> str:
    """Service name derived from its class name, CamelCase to snake_case.

    Example:
        >>> class HelloWorldService: pass
        >>> default_service_name(HelloWorldService())
        'hello_world_service'
    """
    class_name = type(service).__name__
    return re.sub(r'(.)([A-Z])', r'\1_\2', class_name).lower()


class BaseService(ABC):
    """Base class for wrapped services.

    Attributes set by the Runner before start() is called:
        environment: Process environment state (stopped flag, env name)
        svc_config: Config file entries not consumed by the wrapper
        options: Parsed command line namespace
        svc_logger: Logger named after the service
    """

    def __init__(self):
        self.environment: Environment = process_env
        self.svc_config: dict[str, Any] = {}
        self.options: Any = None
        self.svc_logger: logging.Logger = logging.getLogger("svc")

    def is_stopped(self) -> bool:
        """True once a stop was requested (signal or stop command)."""
        return self.environment.is_stopped()

    def sleep(self, seconds: float | None = None) -> bool:
        """Exit-aware sleep that wakes immediately when the service is stopped.

        Args:
            seconds: Time to sleep in seconds, or None to wait until stopped

        Returns:
            True if sleep completed normally, False if interrupted by stop

        Example:
            def start(self):
                while self.sleep(5.0):
                    self.svc_logger.info("Work cycle")
        """
        return not self.environment.wait_stopped(seconds)

    @abstractmethod
    def start(self):
        """Blocking service body, return when done or when is_stopped() turns True."""
        pass

    def stop(self):
        """Stop hook, override to release resources or unblock start()."""
        pass
