"""Tests for pid file handling and cross-process stop."""

import os
import signal
import subprocess
import sys
import threading

import pytest

from svcwrap.errors import DaemonizeError
from svcwrap.launchers.daemon import (
    Daemonizer,
    PidFile,
    is_running,
    replace_command,
    wait_for_exit,
)


def spawn_child(code: str) -> subprocess.Popen:
    """Start a python child; a reaper thread avoids zombies confusing is_running()."""
    process = subprocess.Popen(
        [sys.executable, "-c", code],
        stdout=subprocess.PIPE,
        text=True
    )
    threading.Thread(target=process.wait, daemon=True).start()
    return process


class TestPidFile:

    def test_write_read_remove(self, tmp_path):
        pid_file = PidFile(tmp_path / "run" / "svc.pid")
        pid_file.write(1234)
        assert pid_file.read() == 1234
        pid_file.remove()
        assert pid_file.read() is None
        assert not pid_file.path.exists()

    def test_write_defaults_to_current_pid(self, tmp_path):
        pid_file = PidFile(tmp_path / "svc.pid")
        pid_file.write()
        assert pid_file.read() == os.getpid()

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "svc.pid"
        path.write_text("not-a-pid\n")
        assert PidFile(path).read() is None

    def test_remove_if_owned(self, tmp_path):
        pid_file = PidFile(tmp_path / "svc.pid")
        pid_file.write(os.getpid() + 1)
        pid_file.remove_if_owned()
        assert pid_file.path.exists()

        pid_file.write()
        pid_file.remove_if_owned()
        assert not pid_file.path.exists()


def test_is_running_current_process():
    assert is_running(os.getpid())


def test_send_signal_without_pid_file(tmp_path, capsys):
    daemonizer = Daemonizer(tmp_path / "svc.pid")
    assert daemonizer.stop(stop_timeout=1) is False
    assert "no pid found" in capsys.readouterr().out


def test_send_signal_to_exited_process(tmp_path, capsys):
    """A stale pid file is cleaned up; nothing is running, so the stop succeeds."""
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()

    daemonizer = Daemonizer(tmp_path / "svc.pid")
    daemonizer.pid_file.write(process.pid)

    assert daemonizer.stop(stop_timeout=1) is True
    assert not daemonizer.pid_file.path.exists()
    assert "no such process" in capsys.readouterr().out


def test_stop_terminates_process(tmp_path):
    process = spawn_child("import time; print('ready', flush=True); time.sleep(30)")
    assert process.stdout.readline().strip() == "ready"

    daemonizer = Daemonizer(tmp_path / "svc.pid")
    daemonizer.pid_file.write(process.pid)

    assert daemonizer.send_signal(signal.SIGTERM, timeout=5.0) is True
    assert wait_for_exit(process.pid, timeout=1.0)


def test_stop_escalates_to_kill(tmp_path, capsys):
    """A process ignoring TERM is killed once the timeout expires."""
    process = spawn_child(
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )
    assert process.stdout.readline().strip() == "ready"

    daemonizer = Daemonizer(tmp_path / "svc.pid")
    daemonizer.pid_file.write(process.pid)

    assert daemonizer.send_signal(signal.SIGTERM, timeout=0.5) is False
    assert wait_for_exit(process.pid, timeout=5.0)
    assert process.wait(timeout=5.0) == -signal.SIGKILL
    assert not daemonizer.pid_file.path.exists()
    assert "sending KILL signal" in capsys.readouterr().out


def test_daemonize_refuses_when_running(tmp_path):
    daemonizer = Daemonizer(tmp_path / "svc.pid")
    daemonizer.pid_file.write()  # this process is certainly running

    with pytest.raises(DaemonizeError, match="already running"):
        daemonizer.daemonize([], "svc", None, lambda: 0)


@pytest.mark.parametrize("argv,expected", [
    (["-d", "start"], ["-d", "post_fork"]),
    (["START", "-v"], ["post_fork", "-v"]),
    (["-d"], ["-d", "post_fork"]),
])
def test_replace_command(argv, expected):
    assert replace_command(argv, "post_fork") == expected


@pytest.mark.parametrize("argv,expected", [
    (["-n", "stop", "start"], ["-n", "stop", "post_fork"]),
    (["start", "-n", "stop"], ["post_fork", "-n", "stop"]),
    (["--name", "START", "-d", "start"], ["--name", "START", "-d", "post_fork"]),
])
def test_replace_command_skips_option_values(argv, expected):
    assert replace_command(argv, "post_fork", value_options={"-n", "--name"}) == expected
