"""Detaching the wrapper into the background, and stopping it again.

Two ways to detach:
- fork: classic UNIX double fork, the service runs in the grandchild
- spawn: the interpreter is re-executed detached (new session) with the
  command replaced by ``post_fork``; the new process finishes the setup
  through post_fork_setup(). Used where os.fork is unavailable.

Either way the continuation passed to daemonize() runs exactly once, in
the final process image, and its result becomes that process' exit status.
"""

import atexit
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Collection

from svcwrap.errors import DaemonizeError


STOP_MARGIN = 2.0
POLL_INTERVAL = 0.1


class PidFile:
    """On-disk record of the daemon's process id."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> int | None:
        """Read PID from file, return None if missing or invalid."""
        if not self.path.exists():
            return None
        try:
            content = self.path.read_text().strip()
            return int(content) if content.isdigit() else None
        except (OSError, ValueError):
            return None

    def write(self, pid: int | None = None):
        """Write PID (default: current process) to file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{pid if pid is not None else os.getpid()}\n")

    def remove(self):
        """Remove PID file if present."""
        if self.path.exists():
            self.path.unlink()

    def remove_if_owned(self):
        """Remove PID file only if it still records this process."""
        if self.read() == os.getpid():
            self.remove()

    def __str__(self) -> str:
        return str(self.path)


def is_running(pid: int) -> bool:
    """Check if process with given PID is running."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True


def wait_for_exit(pid: int, timeout: float, poll_interval: float = POLL_INTERVAL) -> bool:
    """Wait for process to exit. Returns True if exited, False on timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not is_running(pid):
            return True
        time.sleep(poll_interval)
    return not is_running(pid)


def redirect_output(redirect: str | None):
    """Point stdin to /dev/null and stdout/stderr to ``redirect`` (or /dev/null)."""
    sys.stdout.flush()
    sys.stderr.flush()
    target = redirect or os.devnull
    with open(os.devnull, 'r') as si, open(target, 'a+') as so:
        os.dup2(si.fileno(), sys.stdin.fileno())
        os.dup2(so.fileno(), sys.stdout.fileno())
        os.dup2(so.fileno(), sys.stderr.fileno())


class Daemonizer:
    """Pid-file based daemon control for a single named service."""

    def __init__(self, pid_file: str | Path, mode: str = "fork", umask: int = 0o022):
        self.pid_file = PidFile(pid_file)
        self.mode = mode
        self.umask = umask
        self.logger = logging.getLogger("daemon")

    def daemonize(
        self,
        argv: list[str],
        name: str,
        redirect: str | None,
        block: Callable[[], int],
        value_options: Collection[str] = ()
    ) -> int:
        """Detach and run ``block`` in the final process image.

        Args:
            argv: Original command line arguments (without the program), used
                to re-execute in spawn mode
            name: Service name, for messages
            redirect: File receiving stdout/stderr of the daemon
            block: Continuation returning the exit status
            value_options: Options of ``argv`` that take a value, so their
                values are not mistaken for the command on re-execution

        Returns:
            Exit status for the calling process: the block's result in the
            daemon, 0 in a launching parent (spawn mode)

        Raises:
            DaemonizeError: already running, or fork/spawn failed
        """
        pid = self.pid_file.read()
        if pid is not None and is_running(pid):
            raise DaemonizeError(f"{name} already running with pid {pid} ({self.pid_file})")

        if self.mode == "spawn":
            return self._spawn(argv, name, value_options)

        self._double_fork()
        self.post_fork_setup(name, redirect)
        return block()

    def _double_fork(self):
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            if os.fork() > 0:
                # first parent
                os._exit(0)
        except OSError as e:
            raise DaemonizeError(f"fork #1 failed: {e.errno} ({e.strerror})") from e

        # Decouple from parent environment
        os.setsid()
        os.umask(self.umask)

        try:
            if os.fork() > 0:
                # second parent
                os._exit(0)
        except OSError as e:
            raise DaemonizeError(f"fork #2 failed: {e.errno} ({e.strerror})") from e

    def _spawn(self, argv: list[str], name: str, value_options: Collection[str]) -> int:
        args = [sys.executable, sys.argv[0], *replace_command(argv, "post_fork", value_options)]
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True
            )
        except OSError as e:
            raise DaemonizeError(f"failed to spawn {name}: {e}") from e
        print(f">> {name} spawned in background (pid {process.pid})")
        return 0

    def post_fork_setup(self, name: str, redirect: str | None):
        """Finish daemon setup in the final process image: pid file and output redirection."""
        self.pid_file.write()
        atexit.register(self.pid_file.remove_if_owned)
        redirect_output(redirect)
        self.logger.info(f"{name} daemon running with pid {os.getpid()}, pid file {self.pid_file}")

    def send_signal(self, sig: signal.Signals, timeout: float) -> bool:
        """Signal the daemon recorded in the pid file and wait for it to exit.

        Escalates to SIGKILL if the process is still alive after ``timeout``.

        Returns:
            True if the daemon is gone without a forced kill, or was not running
            at all; False if there was no pid to signal or a kill was necessary
        """
        pid = self.pid_file.read()
        if pid is None:
            print(f">> can't stop process, no pid found in {self.pid_file}")
            return False

        try:
            print(f">> sending {sig.name} signal to process {pid}")
            os.kill(pid, sig)
        except ProcessLookupError:
            print(f">> no such process {pid}, removing stale pid file {self.pid_file}")
            self.pid_file.remove()
            return True
        except PermissionError:
            print(f">> can't stop process {pid}, permission denied")
            return False

        if wait_for_exit(pid, timeout):
            return True
        return self.force_kill(pid)

    def force_kill(self, pid: int) -> bool:
        print(f">> process {pid} still running after timeout, sending KILL signal")
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        self.pid_file.remove()
        return False

    def stop(self, stop_timeout: float) -> bool:
        """Stop the daemon: TERM, then KILL after stop_timeout + margin."""
        return self.send_signal(signal.SIGTERM, stop_timeout + STOP_MARGIN)


def replace_command(argv: list[str], command: str, value_options: Collection[str] = ()) -> list[str]:
    """Replace the start/stop/post_fork command in ``argv`` with ``command``.

    Tokens following one of ``value_options`` are option values (``-n stop``)
    and are never taken for the command.
    """
    replaced = []
    done = False
    is_value = False
    for arg in argv:
        if is_value:
            replaced.append(arg)
            is_value = False
        elif not done and arg.lower() in ("start", "stop", "post_fork"):
            replaced.append(command)
            done = True
        else:
            replaced.append(arg)
            is_value = arg in value_options
    if not done:
        replaced.append(command)
    return replaced
