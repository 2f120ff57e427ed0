"""Configuration management with multiple sources and precedence.

Run settings are merged from (lowest to highest priority):
built-in defaults, the YAML config file, and command line options.
The result is frozen into a RunConfig record once per invocation.
"""

import logging
import math
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from svcwrap.errors import ConfigurationError


STOP_TIMEOUT = 60.0
SENTINEL_DELAY = 2.0
DEFAULT_LOG_PATTERN = "%(asctime)s.%(msecs)03d [%(levelname)-5s] [%(name)-8s] %(message)s"
COMMANDS = ("start", "stop", "post_fork")
DAEMON_MODES = ("fork", "spawn")

# Keys the wrapper itself understands, everything else is handed to the service
RUN_KEYS = {
    "daemon_name", "log_file", "log_stdout", "verbose", "log_pattern", "log_level",
    "stop_timeout", "environment", "pid_file", "redirect", "sentinel_delay", "daemon_mode",
}


def expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR_NAME} environment variables in config.

    Behavior:
        - If VAR_NAME is set: Replace with environment variable value
        - If VAR_NAME is unset: Keep placeholder and log warning
        - If the entire value is ${VAR} and result is numeric, convert to int/float

    Examples:
        >>> os.environ["STOP_TIMEOUT"] = "30"
        >>> expand_env_vars("${STOP_TIMEOUT}")
        30
        >>> expand_env_vars("log/${MISSING}.log")  # MISSING not in env
        'log/${MISSING}.log'
    """
    if isinstance(value, str):
        pattern = r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}'

        full_match = re.fullmatch(pattern, value)
        if full_match:
            var_name = full_match.group(1)
            env_value = os.getenv(var_name)
            if env_value is None:
                logging.getLogger("cfg").warning(
                    f"Environment variable '${{{var_name}}}' not set, keeping placeholder"
                )
                return value

            try:
                if '.' in env_value:
                    return float(env_value)
                else:
                    return int(env_value)
            except ValueError:
                return env_value

        def replacer(match):
            var_name = match.group(1)
            env_value = os.getenv(var_name)
            if env_value is None:
                logging.getLogger("cfg").warning(
                    f"Environment variable '${{{var_name}}}' not set, keeping placeholder"
                )
                return match.group(0)
            return env_value

        return re.sub(pattern, replacer, value)

    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]

    else:
        return value


class ConfigSource(ABC):
    """Base class for configuration sources."""

    def __init__(self, priority: int = 0):
        self.priority = priority  # Higher number = higher priority

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Load configuration data."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if source is available."""
        pass


class FileConfigSource(ConfigSource):
    """Configuration from YAML file."""

    def __init__(self, file_path: str | Path, priority: int = 10):
        super().__init__(priority)
        self.file_path = file_path

    def load(self) -> dict[str, Any]:
        """Load configuration from file and expand environment variables.

        Raises:
            ConfigurationError: file is not valid YAML or not a mapping
        """
        try:
            with open(self.file_path) as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {self.file_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Config file {self.file_path} must contain a mapping, got {type(config).__name__}"
            )
        return expand_env_vars(config)

    def is_available(self) -> bool:
        """Check if file exists."""
        return Path(self.file_path).exists()


class ArgsConfigSource(ConfigSource):
    """Configuration from command line arguments or dict."""

    def __init__(self, config_dict: dict[str, Any], priority: int = 30):
        super().__init__(priority)
        self.config_dict = config_dict

    def load(self) -> dict[str, Any]:
        """Return provided configuration."""
        return self.config_dict

    def is_available(self) -> bool:
        """Always available."""
        return True


class DefaultConfigSource(ConfigSource):
    """Default configuration values."""

    def __init__(self, defaults: dict[str, Any] | None = None, priority: int = 0):
        super().__init__(priority)
        self.defaults = defaults or {}

    def load(self) -> dict[str, Any]:
        """Return default configuration."""
        return self.defaults

    def is_available(self) -> bool:
        """Always available."""
        return True


class ConfigurationManager:
    """Manages configuration from multiple sources with precedence."""

    def __init__(self):
        self.logger = logging.getLogger("cfg")
        self.sources: list[ConfigSource] = []

    def add_source(self, source: ConfigSource):
        """Add a configuration source."""
        self.sources.append(source)
        # Sort by priority (highest first)
        self.sources.sort(key=lambda s: s.priority, reverse=True)
        self.logger.debug(f"Added config source with priority {source.priority}")

    def log_sources(self):
        """Log the configuration layers at debug level, highest priority first."""
        for source in self.sources:
            if isinstance(source, FileConfigSource):
                label = f"file {source.file_path}"
            elif isinstance(source, ArgsConfigSource):
                label = f"command line {sorted(source.config_dict)}"
            else:
                label = "defaults"
            state = "loaded" if source.is_available() else "missing"
            self.logger.debug(f"config layer [{source.priority:2d}] {label} {state}")

    def get_raw_config(self) -> dict[str, Any]:
        """Get merged configuration from all available sources."""
        merged_config = {}

        # Start with lowest priority sources and merge up
        for source in reversed(self.sources):
            if not source.is_available():
                continue

            source_config = source.load()
            if source_config:
                merged_config = self._deep_merge(merged_config, source_config)
                self.logger.debug(f"Merged config from {type(source).__name__}")

        return merged_config

    def _deep_merge(self, base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                isinstance(result[key], dict) and
                isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


@dataclass(frozen=True)
class RunConfig:
    """Resolved settings for one wrapper invocation.

    Attributes:
        command: 'start', 'stop' or 'post_fork'
        name: Service display name, also used for default pid/log file names
        stop_timeout: Grace period in seconds before the service thread is killed
        daemonize: Run detached in the background
        log_file: Log file path, None for no file logging
        log_stdout: Log to standard output
        verbose: Enable debug logging
        log_pattern: logging format string
        log_level: Optional level name applied after setup (e.g. 'warning')
        pid_file: Pid file path used by the daemon and the stop command
        redirect: File receiving stdout/stderr when daemonized (None = /dev/null)
        config_file: Config file that was loaded, if any
        sentinel_delay: Seconds before a non-daemonized process kills itself
            after the service finished (<= 0 disables)
        daemon_mode: 'fork' (double fork) or 'spawn' (re-exec with post_fork)
        settings: Config file entries not consumed by the wrapper
    """
    command: str
    name: str
    stop_timeout: float = STOP_TIMEOUT
    daemonize: bool = False
    log_file: str | None = None
    log_stdout: bool = True
    verbose: bool = False
    log_pattern: str = DEFAULT_LOG_PATTERN
    log_level: str | None = None
    pid_file: str = ""
    redirect: str | None = None
    config_file: str | None = None
    sentinel_delay: float = SENTINEL_DELAY
    daemon_mode: str = "fork"
    settings: dict[str, Any] = field(default_factory=dict)


def parse_stop_timeout(value: Any) -> float:
    """Validate a grace period value.

    Raises:
        ConfigurationError: value is not a number or is not > 0
    """
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid stop timeout {value!r}, must be a number of seconds") from e
    if not math.isfinite(timeout):
        raise ConfigurationError(f"invalid stop timeout {value!r}, must be a finite number of seconds")
    if timeout <= 0:
        raise ConfigurationError(f"invalid stop timeout {value!r}, must be > 0")
    return timeout


def default_config_file(service_name: str) -> str:
    return f"./config/{service_name}.yaml"


def create_configuration_manager(
    config_file: str | Path | None = None,
    args_config: dict[str, Any] | None = None,
    defaults: dict[str, Any] | None = None
) -> ConfigurationManager:
    """Create a configuration manager with standard sources."""
    manager = ConfigurationManager()

    if defaults:
        manager.add_source(DefaultConfigSource(defaults))

    if config_file:
        manager.add_source(FileConfigSource(config_file))

    # Command line always wins
    if args_config:
        manager.add_source(ArgsConfigSource(args_config))

    return manager


def resolve_run_config(
    command: str,
    cli: dict[str, Any],
    default_name: str,
    environment=None
) -> RunConfig:
    """Merge command line values over the config file and defaults.

    Args:
        command: Resolved command ('start', 'stop', 'post_fork')
        cli: Command line values that were actually given. Recognized keys:
            name, config, log_file, log_stdout, verbose, log_pattern, daemonize,
            pid_file, redirect, stop_timeout, environment
        default_name: Name derived from the service class
        environment: Environment to update from the config file's
            'environment' key (ignored when -e was given on the command line)

    Returns:
        Frozen RunConfig

    Raises:
        ConfigurationError: bad command, missing explicit config file,
            invalid stop timeout or daemon mode
    """
    logger = logging.getLogger("cfg")

    if command not in COMMANDS:
        raise ConfigurationError(f"unknown command {command!r}, expected one of {', '.join(COMMANDS)}")

    explicit_config = cli.get("config")
    if explicit_config is not None:
        if not Path(explicit_config).exists():
            raise ConfigurationError(f"Configuration file not found: {explicit_config}")
        config_file = explicit_config
    else:
        config_file = default_config_file(default_name)
        if not Path(config_file).exists():
            logger.debug(f"Default config file not found: {config_file}")
            config_file = None

    # Map command line names onto config file keys
    args_config = {}
    for cli_key, cfg_key in (
        ("name", "daemon_name"),
        ("log_file", "log_file"),
        ("log_stdout", "log_stdout"),
        ("verbose", "verbose"),
        ("log_pattern", "log_pattern"),
        ("pid_file", "pid_file"),
        ("redirect", "redirect"),
        ("stop_timeout", "stop_timeout"),
        ("environment", "environment"),
    ):
        if cli.get(cli_key) is not None:
            args_config[cfg_key] = cli[cli_key]

    manager = create_configuration_manager(config_file=config_file, args_config=args_config)
    manager.log_sources()
    raw = manager.get_raw_config()

    daemonize = bool(cli.get("daemonize", False))
    name = str(raw.get("daemon_name") or default_name)

    log_file = raw.get("log_file")
    if log_file is None and daemonize:
        log_file = os.path.abspath(f"{name}.log")

    log_stdout = raw.get("log_stdout")
    if log_stdout is None:
        log_stdout = not daemonize

    stop_timeout = parse_stop_timeout(raw.get("stop_timeout", STOP_TIMEOUT))

    sentinel_delay = raw.get("sentinel_delay", SENTINEL_DELAY)
    try:
        sentinel_delay = float(sentinel_delay)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid sentinel_delay {sentinel_delay!r}") from e

    daemon_mode = raw.get("daemon_mode") or ("fork" if hasattr(os, "fork") else "spawn")
    if daemon_mode not in DAEMON_MODES:
        raise ConfigurationError(f"invalid daemon_mode {daemon_mode!r}, expected fork or spawn")

    if environment is not None and "environment" not in args_config and raw.get("environment"):
        environment.set(raw["environment"])

    return RunConfig(
        command=command,
        name=name,
        stop_timeout=stop_timeout,
        daemonize=daemonize,
        log_file=log_file,
        log_stdout=bool(log_stdout),
        verbose=bool(raw.get("verbose", False)),
        log_pattern=raw.get("log_pattern") or DEFAULT_LOG_PATTERN,
        log_level=raw.get("log_level"),
        pid_file=str(raw.get("pid_file") or f"./{name}.pid"),
        redirect=raw.get("redirect"),
        config_file=str(config_file) if config_file else None,
        sentinel_delay=sentinel_delay,
        daemon_mode=daemon_mode,
        settings={k: v for k, v in raw.items() if k not in RUN_KEYS},
    )
