"""Run orchestrator: turns a service object into a start/stop controllable process.

Usage from a service script:

    class MyService:
        def start(self):
            while not process_env.is_stopped():
                ...

    if __name__ == "__main__":
        svcwrap.main(MyService())

then:

    python my_service.py start            # foreground
    python my_service.py -d start         # daemonized
    python my_service.py stop             # stop the daemon
"""

import argparse
import asyncio
import atexit
import logging
import os
import signal
import sys
import threading
from typing import Any

from svcwrap import __version__
from svcwrap.base_service import BaseService, ServiceCapabilities, default_service_name
from svcwrap.errors import ConfigurationError, DaemonizeError
from svcwrap.launchers.daemon import Daemonizer
from svcwrap.log_setup import set_level, setup_logging
from svcwrap.management.configuration import COMMANDS, RunConfig, resolve_run_config
from svcwrap.management.environment import Environment, load_dotenv_if_available, process_env
from svcwrap.management.execution import ServiceThread
from svcwrap.management.signals import SignalTrampoline
from svcwrap.management.stop_coordinator import StopCoordinator
from svcwrap.management.supervisor import SECOND, wait_or_kill


EXIT_SUCCESS = 0
EXIT_FAILURE = 1

# QUIT is left alone, the default core-dump behavior is useful for debugging
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class UsageError(Exception):
    """Bad command line, usage has to be printed."""


class _UsageParser(argparse.ArgumentParser):
    """ArgumentParser reporting errors as UsageError instead of exiting with status 2."""

    def error(self, message):
        raise UsageError(message)


class Runner:
    """Runs one service object until it finishes or is stopped.

    Attributes:
        service: The wrapped service object
        options: Parsed command line namespace
        config: Resolved RunConfig (after run() resolved it)
    """

    def __init__(
        self,
        argv: list[str],
        service: Any,
        environment: Environment | None = None,
        poll_interval: float = SECOND
    ):
        self.service = service
        self.capabilities = ServiceCapabilities.of(service)
        self.environment = environment if environment is not None else process_env
        self.poll_interval = poll_interval
        self.logger = logging.getLogger("run")
        self.config: RunConfig | None = None
        self.daemonizer: Daemonizer | None = None
        self.coordinator: StopCoordinator | None = None

        # keep a copy for re-execution in spawn mode
        self._argv = list(argv)
        self.parser = self.create_argument_parser()
        self.options, self._usage_error = self._parse(self._argv)

    def create_argument_parser(self) -> argparse.ArgumentParser:
        """Create the parser with the wrapper options, extended by the service if it wants to."""
        parser = _UsageParser(
            usage="%(prog)s [options] start|stop",
            add_help=False,
            description="service wrapper common options"
        )
        parser.add_argument("command", nargs="?", help="start, stop (or post_fork, internal)")

        parser.add_argument("-e", "--environment", metavar="NAME",
                            help=f"set the execution environment (default: {self.environment.get()})")
        parser.add_argument("-l", "--log", dest="log_file", metavar="FILE",
                            help="log to file (default: in console mode: no, daemonized: <service>.log)")
        parser.add_argument("-s", "--stdout", dest="log_stdout", action="store_true", default=None,
                            help="log to stdout (default: in console mode: true, daemonized: false)")
        parser.add_argument("-v", "--verbose", action="store_true", default=None,
                            help="enable verbose logging (default: false)")
        parser.add_argument("--pattern", dest="log_pattern", metavar="PATTERN",
                            help="logging format pattern")
        parser.add_argument("--no-color", action="store_true",
                            help="disable colored console logging (use plain text)")

        parser.add_argument("-c", "--config", metavar="FILE",
                            help="config file (default: ./config/<service>.yaml)")
        parser.add_argument("-d", "--daemonize", action="store_true",
                            help="run daemonized in the background (default: false)")
        parser.add_argument("-P", "--pid", dest="pid_file", metavar="FILE",
                            help="pid file when daemonized (default: <service>.pid)")
        parser.add_argument("-r", "--redirect", metavar="FILE",
                            help="redirect stdout to FILE when daemonized (default: no)")
        parser.add_argument("-n", "--name", metavar="NAME",
                            help="daemon process name (default: <service>)")
        parser.add_argument("--timeout", dest="stop_timeout", metavar="SECONDS",
                            help="seconds to wait before force stopping the service (default: 60)")

        parser.add_argument("-h", "--help", action="store_true", help="display help message")

        if self.capabilities.options_parser is not None:
            parser = self.capabilities.options_parser(parser) or parser
        return parser

    def _parse(self, argv: list[str]) -> tuple[argparse.Namespace | None, str | None]:
        try:
            options = self.parser.parse_args(argv)
        except UsageError as e:
            return None, str(e)

        if options.help:
            return options, ""
        options.command = (options.command or "").lower()
        if options.command not in COMMANDS:
            return options, "start|stop command is required"
        return options, None

    def value_options(self) -> set[str]:
        """Option strings taking a value, including options added by the service."""
        return {
            option
            for action in self.parser._actions
            if action.nargs != 0
            for option in action.option_strings
        }

    def show_usage(self, message: str | None = None):
        """Print usage (and the error, if any) to standard output."""
        if message:
            print(f">> {message}")
        print(self.parser.format_help())

    def run(self) -> int:
        """Resolve settings and dispatch on the command.

        Returns:
            Process exit status
        """
        if self._usage_error is not None:
            self.show_usage(self._usage_error)
            return EXIT_FAILURE

        load_dotenv_if_available()

        if self.options.environment:
            self.environment.set(self.options.environment)

        try:
            self.config = resolve_run_config(
                self.options.command,
                self._cli_values(),
                default_service_name(self.service),
                environment=self.environment
            )
        except ConfigurationError as e:
            print(f">> configuration error: {e}")
            return EXIT_FAILURE

        self.daemonizer = Daemonizer(self.config.pid_file, mode=self.config.daemon_mode)

        if self.config.command == "stop":
            print(f">> service wrapper v{__version__} stopping")
            # TERM triggers the daemon's own wait_or_kill, which gives up after stop_timeout;
            # if the process is still there 2 seconds later it gets KILL.
            return EXIT_SUCCESS if self.daemonizer.stop(self.config.stop_timeout) else EXIT_FAILURE

        setup_logging(
            file=self.config.log_file,
            stdout=self.config.log_stdout,
            verbose=self.config.verbose,
            pattern=self.config.log_pattern,
            use_color=not self.options.no_color
        )
        if self.config.log_level:
            try:
                set_level(self.config.log_level)
            except ValueError as e:
                print(f">> configuration error: {e}")
                return EXIT_FAILURE

        if self.config.command == "post_fork":
            # re-executed by the spawn daemonizer, finish setup
            self.daemonizer.post_fork_setup(self.config.name, self.config.redirect)
            return self.run_service()

        print(f">> service wrapper v{__version__} starting")
        if self.config.daemonize:
            try:
                return self.daemonizer.daemonize(
                    self._argv, self.config.name, self.config.redirect, self.run_service,
                    value_options=self.value_options()
                )
            except DaemonizeError as e:
                print(f">> {e}")
                return EXIT_FAILURE
        return self.run_service()

    def _cli_values(self) -> dict[str, Any]:
        opts = self.options
        return {
            "name": opts.name,
            "config": opts.config,
            "log_file": opts.log_file,
            "log_stdout": opts.log_stdout,
            "verbose": opts.verbose,
            "log_pattern": opts.log_pattern,
            "daemonize": opts.daemonize,
            "pid_file": opts.pid_file,
            "redirect": opts.redirect,
            "stop_timeout": opts.stop_timeout,
            "environment": opts.environment,
        }

    def run_service(self) -> int:
        """Run the service until it returns or is stopped.

        Returns:
            EXIT_SUCCESS if the service thread ended by itself, EXIT_FAILURE if
            it had to be killed after the stop timeout

        Raises:
            ServiceFault: the service's start() raised
        """
        config = self.config
        self.logger.info(f"starting {config.name} service in {self.environment.get()} mode")
        atexit.register(self.logger.info, ">> service wrapper stopped")

        if isinstance(self.service, BaseService):
            self.service.environment = self.environment
            self.service.svc_config = dict(config.settings)
            self.service.options = self.options
            self.service.svc_logger = logging.getLogger(f"svc|{config.name}")

        self.coordinator = StopCoordinator(
            config.name, stop_hook=self.capabilities.stop, environment=self.environment
        )

        result = asyncio.run(self._supervise())

        # not daemonized: if some stray thread keeps us alive, hara-kiri after the delay
        if not config.daemonize:
            self.arm_sentinel(config.sentinel_delay)
        return EXIT_SUCCESS if result else EXIT_FAILURE

    async def _supervise(self) -> bool:
        loop = asyncio.get_running_loop()
        trampoline = SignalTrampoline(loop)
        for sig in STOP_SIGNALS:
            trampoline.trap(sig, self.stop_service)

        # start() is expected to return only when done or stopped
        thread = ServiceThread(
            self.capabilities.start,
            on_return=self.stop_service,
            name=self.config.name,
            loop=loop
        )
        thread.start()
        try:
            return await wait_or_kill(thread, self.coordinator, self.config.stop_timeout, self.poll_interval)
        finally:
            trampoline.restore()

    def stop_service(self) -> bool:
        """Request the service to stop. Safe to call any number of times from any thread."""
        return self.coordinator.request_stop()

    @staticmethod
    def arm_sentinel(delay: float) -> threading.Timer | None:
        """Kill this process unconditionally after ``delay`` seconds (<= 0 disables).

        KILL cannot be caught, so this is final: exit hooks still pending at
        that point are not run.
        """
        if delay <= 0:
            return None
        timer = threading.Timer(delay, os.kill, args=(os.getpid(), signal.SIGKILL))
        timer.daemon = True
        timer.start()
        return timer


def main(service: Any, argv: list[str] | None = None):
    """Entry point for service scripts: run ``service`` and exit with the result."""
    runner = Runner(sys.argv[1:] if argv is None else argv, service)
    # sys.exit (not os._exit) so atexit hooks like pid file cleanup still run
    sys.exit(runner.run())
