"""Service management components."""

from .configuration import (
    ArgsConfigSource,
    ConfigSource,
    ConfigurationManager,
    DefaultConfigSource,
    FileConfigSource,
    RunConfig,
    create_configuration_manager,
    resolve_run_config,
)
from .environment import Env, Environment, process_env
from .execution import ServiceThread
from .signals import SignalTrampoline
from .stop_coordinator import StopCoordinator
from .supervisor import wait_or_kill


__all__ = [
    "ConfigurationManager",
    "ConfigSource",
    "FileConfigSource",
    "ArgsConfigSource",
    "DefaultConfigSource",
    "RunConfig",
    "create_configuration_manager",
    "resolve_run_config",
    "Env",
    "Environment",
    "process_env",
    "ServiceThread",
    "SignalTrampoline",
    "StopCoordinator",
    "wait_or_kill",
]
