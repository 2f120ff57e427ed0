"""End-to-end tests running a wrapped service script in a subprocess."""
import os
import signal
import subprocess
import sys
import time

import pytest

from tests.helpers.wait_helpers import wait_for_text


# Get project root for PYTHONPATH
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
MOCK_DAEMON = os.path.join(PROJECT_ROOT, "tests", "services", "mock_daemon.py")

pytestmark = pytest.mark.skipif(os.name != "posix", reason="requires POSIX signals")


def run_mock(args, tmp_path, **mock_env):
    """Start mock_daemon.py with ``args`` in ``tmp_path``."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.path.join(PROJECT_ROOT, "src") + os.pathsep + PROJECT_ROOT
    env["MOCK_MARKER"] = str(tmp_path / "marker.txt")
    for key, value in mock_env.items():
        env[f"MOCK_{key.upper()}"] = str(value)

    return subprocess.Popen(
        [sys.executable, MOCK_DAEMON, "--no-color", *args],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=tmp_path,
        env=env
    )


def marker_events(tmp_path) -> list[tuple[str, float]]:
    events = []
    for line in (tmp_path / "marker.txt").read_text().splitlines():
        event, _, stamp = line.rpartition(" ")
        events.append((event, float(stamp)))
    return events


def test_missing_command_prints_usage(tmp_path):
    process = run_mock([], tmp_path)
    stdout, _ = process.communicate(timeout=10)

    assert process.returncode == 1
    assert "start|stop command is required" in stdout
    assert "usage:" in stdout


def test_natural_completion_exits_successfully(tmp_path):
    process = run_mock(["start"], tmp_path, mode="oneshot", work_time=0.3)
    stdout, stderr = process.communicate(timeout=15)

    assert process.returncode == 0, stderr
    assert "service wrapper v" in stdout
    names = [event for event, _ in marker_events(tmp_path)]
    assert names[0].startswith("started")
    # returning from start() runs the stop hook exactly like a stop request
    assert names[1:] == ["returned", "stop"]


def test_stop_within_grace_period(tmp_path):
    """grace=3, start() returns 1s after the stop flag: success."""
    process = run_mock(["--timeout", "3", "start"], tmp_path, mode="cooperative", stop_delay=1)
    try:
        assert wait_for_text(tmp_path / "marker.txt", "started", timeout=10)
        process.send_signal(signal.SIGTERM)
        stdout, stderr = process.communicate(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()

    assert process.returncode == 0, stderr
    events = dict(marker_events(tmp_path))
    names = [event for event, _ in marker_events(tmp_path)]
    assert names.count("stop") == 1
    assert 0.8 <= events["returned"] - events["stop"] < 2.5


def test_stop_timeout_exhausted(tmp_path):
    """grace=2, start() never returns: killed after ~2s, failure status."""
    process = run_mock(["--timeout", "2", "start"], tmp_path, mode="stubborn")
    try:
        assert wait_for_text(tmp_path / "marker.txt", "started", timeout=10)
        sent_at = time.monotonic()
        process.send_signal(signal.SIGTERM)
        stdout, stderr = process.communicate(timeout=15)
        elapsed = time.monotonic() - sent_at
    finally:
        if process.poll() is None:
            process.kill()

    assert process.returncode == 1
    assert "stop timeout exhausted" in stdout + stderr
    assert 2.0 <= elapsed < 6.0
    names = [event for event, _ in marker_events(tmp_path)]
    assert names.count("stop") == 1
    assert "returned" not in names


def test_repeated_signals_stop_once(tmp_path):
    process = run_mock(["--timeout", "5", "start"], tmp_path, mode="cooperative", stop_delay=0.5)
    try:
        assert wait_for_text(tmp_path / "marker.txt", "started", timeout=10)
        process.send_signal(signal.SIGTERM)
        process.send_signal(signal.SIGINT)
        process.send_signal(signal.SIGTERM)
        _, stderr = process.communicate(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()

    assert process.returncode == 0, stderr
    names = [event for event, _ in marker_events(tmp_path)]
    assert names.count("stop") == 1


def test_service_crash_fails_fast(tmp_path):
    process = run_mock(["start"], tmp_path, mode="crash")
    _, stderr = process.communicate(timeout=15)

    assert process.returncode != 0
    assert "mock crash" in stderr
    names = [event for event, _ in marker_events(tmp_path)]
    assert "stop" not in names


def test_environment_option(tmp_path):
    process = run_mock(["-e", "staging", "start"], tmp_path, mode="oneshot", work_time=0.1)
    _, stderr = process.communicate(timeout=15)

    assert process.returncode == 0, stderr
    assert "env=stage" in (tmp_path / "marker.txt").read_text()


def test_invalid_timeout_rejected_before_start(tmp_path):
    process = run_mock(["--timeout", "0", "start"], tmp_path, mode="oneshot")
    stdout, _ = process.communicate(timeout=10)

    assert process.returncode == 1
    assert "configuration error" in stdout
    assert not (tmp_path / "marker.txt").exists()


def test_stray_thread_triggers_sentinel_kill(tmp_path):
    """A non-daemon thread left behind by the service cannot keep a foreground run alive."""
    process = run_mock(["start"], tmp_path, mode="stray", work_time=60)
    try:
        _, stderr = process.communicate(timeout=20)
        exited_at = time.monotonic()
    finally:
        if process.poll() is None:
            process.kill()

    assert process.returncode == -signal.SIGKILL, stderr
    events = dict(marker_events(tmp_path))
    names = [event for event, _ in marker_events(tmp_path)]
    assert names[1:] == ["returned", "stop"]
    # killed by the 2s default sentinel, long before the stray thread would end
    assert 1.5 <= exited_at - events["returned"] < 10.0
    assert ">> service wrapper stopped" not in stderr
