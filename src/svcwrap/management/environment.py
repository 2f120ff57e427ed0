"""Process-wide environment state.

Holds the named execution environment (development, production, ...) and
the "stopped" flag that services poll to know when to return from their
blocking start(). Both are guarded by their own lock, so readers never
observe a torn value.

Also provides .env loading for the service wrapper entry points.
"""

import logging
import threading
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv


class Env(str, Enum):
    """Well-known environment names."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGE = "stage"
    TEST = "test"

    def __str__(self) -> str:
        return self.value


_ALIASES = {
    "dev": Env.DEVELOPMENT,
    "development": Env.DEVELOPMENT,
    "prod": Env.PRODUCTION,
    "production": Env.PRODUCTION,
    "stage": Env.STAGE,
    "staging": Env.STAGE,
    "test": Env.TEST,
}


def normalize_env(value: "str | Env") -> "Env | str":
    """Map common aliases to an Env member, pass anything else through.

    Examples:
        >>> normalize_env("prod")
        <Env.PRODUCTION: 'production'>
        >>> normalize_env("custom")
        'custom'
    """
    if isinstance(value, Env):
        return value
    name = str(value)
    return _ALIASES.get(name, name)


class Environment:
    """Mutable environment/stopped state shared by the wrapper and the service."""

    def __init__(self, env: "str | Env" = Env.DEVELOPMENT):
        self._env_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._env = normalize_env(env)
        self._stopped = threading.Event()

    def get(self) -> "Env | str":
        """Current environment."""
        with self._env_lock:
            return self._env

    def set(self, value: "str | Env") -> "Env | str":
        """Set the environment, normalizing aliases. Returns the stored value."""
        env = normalize_env(value)
        with self._env_lock:
            self._env = env
        return env

    def is_development(self) -> bool:
        return self.get() == Env.DEVELOPMENT

    def is_production(self) -> bool:
        return self.get() == Env.PRODUCTION

    def is_stage(self) -> bool:
        return self.get() == Env.STAGE

    def is_test(self) -> bool:
        return self.get() == Env.TEST

    def is_stopped(self) -> bool:
        """True once a stop has been requested or the service start() returned."""
        with self._stop_lock:
            return self._stopped.is_set()

    def set_stopped(self, state: bool):
        with self._stop_lock:
            if state:
                self._stopped.set()
            else:
                self._stopped.clear()

    def wait_stopped(self, timeout: float | None = None) -> bool:
        """Block until stopped (or timeout). Returns the stopped state."""
        return self._stopped.wait(timeout)

    def __repr__(self) -> str:
        return f"Environment(env={self.get()!s}, stopped={self.is_stopped()})"


# Shared by everything running in this process unless an explicit instance is injected
process_env = Environment()


def load_dotenv_if_available() -> tuple[bool, Path | None]:
    """Load .env file from current directory if it exists.

    Existing environment variables take precedence (override=False).

    Returns:
        Tuple of (loaded, absolute path of the .env file or None)
    """
    logger = logging.getLogger("env")

    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file, override=False)
        return True, env_file.absolute()
    logger.debug("No .env file found in current directory")
    return False, None
