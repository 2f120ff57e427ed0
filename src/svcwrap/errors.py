"""Exception types raised by the service wrapper."""


class SvcwrapError(Exception):
    """Base class for all service wrapper errors."""


class ConfigurationError(SvcwrapError):
    """Invalid or missing run configuration (bad stop timeout, missing config file, ...)."""


class DaemonizeError(SvcwrapError):
    """Detaching the process into the background failed."""


class ServiceFault(SvcwrapError):
    """The service's start() raised.

    The original exception is available as ``__cause__`` and ``error``.
    """

    def __init__(self, service_name: str, error: BaseException):
        super().__init__(f"service {service_name} failed: {error!r}")
        self.service_name = service_name
        self.error = error
