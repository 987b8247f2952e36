"""Persistent runners for the Claude Code CLI."""

from xangi.runners.base import RunnerState, RunResult, StreamCallbacks
from xangi.runners.errors import (
    ProcessCrashed,
    RequestTimeout,
    ResultError,
    RunnerError,
    ShutdownError,
    StartupError,
)
from xangi.runners.persistent import PersistentRunner
from xangi.runners.ports import Runner, RunnerEvent
from xangi.runners.registry import RunnerRegistry

__all__ = [
    "PersistentRunner",
    "ProcessCrashed",
    "RequestTimeout",
    "ResultError",
    "RunResult",
    "Runner",
    "RunnerError",
    "RunnerEvent",
    "RunnerRegistry",
    "RunnerState",
    "ShutdownError",
    "StartupError",
    "StreamCallbacks",
]
