"""Service wrapper: run any object with a blocking start() as a controllable process."""

__version__ = "1.0.0"

from svcwrap.base_service import BaseService, ServiceCapabilities, default_service_name
from svcwrap.errors import ConfigurationError, DaemonizeError, ServiceFault, SvcwrapError
from svcwrap.launchers.runner import Runner, main
from svcwrap.management.environment import Env, Environment, process_env


__all__ = [
    "__version__",
    "BaseService",
    "ServiceCapabilities",
    "default_service_name",
    "Runner",
    "main",
    "Env",
    "Environment",
    "process_env",
    "SvcwrapError",
    "ConfigurationError",
    "DaemonizeError",
    "ServiceFault",
]
