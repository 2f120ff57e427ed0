"""Pytest configuration for svcwrap tests."""

import pytest

from svcwrap.management.environment import Environment


@pytest.fixture
def environment():
    """Fresh environment state, isolated from the process-wide one."""
    return Environment()


@pytest.fixture
def in_tmp_dir(tmp_path, monkeypatch):
    """Run the test with the working directory set to a temporary directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path
