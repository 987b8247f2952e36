"""Errors raised to callers of a persistent runner.

Callers only ever see these through the awaitable returned by
``PersistentRunner.submit()`` (or the ``on_error`` callback).
``ParseError`` never leaves the stream parser.
"""

from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for request failures."""


class StartupError(RunnerError):
    """The Claude process could not be spawned."""


class ResultError(RunnerError):
    """The process answered with ``is_error: true``.

    The message is the ``result`` text of the event.
    """

    def __init__(self, result: str, session_id: str | None = None):
        super().__init__(result)
        self.result = result
        self.session_id = session_id


class ShutdownError(RunnerError):
    """The runner was shut down before the request completed."""


class ProcessCrashed(RunnerError):
    """The process exited while a request was in flight."""

    def __init__(self, returncode: int | None):
        super().__init__(f"Claude process exited unexpectedly (code {returncode})")
        self.returncode = returncode


class RequestTimeout(RunnerError, TimeoutError):
    """The request did not complete within its timeout."""

    def __init__(self, timeout_s: float):
        super().__init__(f"No result after {timeout_s:g}s")
        self.timeout_s = timeout_s


class ParseError(ValueError):
    """A stream line could not be decoded into a known event."""
