"""Shared pytest fixtures for the xangi test suite.

Runner tests talk to a real subprocess: ``tests/fake_claude.py`` run with
the current interpreter, which speaks the stream-json protocol.
"""

from __future__ import annotations

import asyncio
import shlex
import sys
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import pytest

from xangi.config import RunnerConfig
from xangi.runners.base import RunnerState
from xangi.runners.persistent import PersistentRunner

FAKE_CLAUDE = Path(__file__).parent / "fake_claude.py"
FAKE_COMMAND = (sys.executable, str(FAKE_CLAUDE))

T = TypeVar("T")


@pytest.fixture
def fake_command() -> tuple[str, ...]:
    return FAKE_COMMAND


@pytest.fixture
def fake_command_env(monkeypatch, tmp_path: Path) -> Path:
    """Point the environment config at the fake CLI and a temp workspace."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WORKSPACE_PATH", str(tmp_path))
    monkeypatch.setenv("CLAUDE_COMMAND", shlex.join(FAKE_COMMAND))
    for name in (
        "XANGI_DATA_DIR",
        "CLAUDE_MODEL",
        "SKIP_PERMISSIONS",
        "XANGI_REQUEST_TIMEOUT",
        "XANGI_SHUTDOWN_GRACE",
        "XANGI_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(
        workdir=str(tmp_path),
        command=FAKE_COMMAND,
        skip_permissions=True,
        shutdown_grace_s=1.0,
    )


@pytest.fixture
def arun() -> Callable[[Awaitable[T]], T]:
    """Run a coroutine on a fresh event loop, failing instead of hanging."""

    def _run(coro: Awaitable[T], timeout: float = 20.0) -> T:
        return asyncio.run(asyncio.wait_for(coro, timeout))

    return _run


async def _wait_for_state(runner: PersistentRunner, state: RunnerState, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while runner.state is not state:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"runner stuck in {runner.state}, expected {state}")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_for_state():
    """Poll until a runner reaches the given state."""
    return _wait_for_state
