"""Shared runner types and transcript logging."""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

TextCallback = Callable[[str, str], Union[None, Awaitable[None]]]
CompleteCallback = Callable[["RunResult"], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[BaseException], Union[None, Awaitable[None]]]


class RunnerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    BUSY = "busy"
    SHUTTING_DOWN = "shutting_down"
    DEAD = "dead"


@dataclass(frozen=True)
class RunResult:
    """Final result of one prompt."""

    result: str
    session_id: str | None


@dataclass
class StreamCallbacks:
    """Optional per-request hooks.

    on_text(delta, cumulative) - each text block as it arrives
    on_complete(result) - once, after a successful result
    on_error(exc) - once, when the process reports an error
    """

    on_text: TextCallback | None = None
    on_complete: CompleteCallback | None = None
    on_error: ErrorCallback | None = None


@dataclass
class PendingRequest:
    prompt: str
    future: asyncio.Future
    callbacks: StreamCallbacks = field(default_factory=StreamCallbacks)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    submitted_at: float = field(default_factory=time.monotonic)
    text: str = ""
    orphaned: bool = False
    timeout_handle: asyncio.TimerHandle | None = None

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, result: RunResult) -> bool:
        self._cancel_timeout()
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def reject(self, exc: BaseException) -> bool:
        self._cancel_timeout()
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True

    def _cancel_timeout(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None


class BaseRunner:
    """Working directory plus an optional per-session transcript log."""

    def __init__(
        self,
        working_dir: str,
        output_dir: Path | None = None,
        session_name: str | None = None,
    ):
        self.working_dir = working_dir
        self.output_dir = output_dir
        self.session_name = session_name
        self.output_file: Path | None = None

        if output_dir is not None and session_name:
            safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in session_name)
            self.output_file = output_dir / f"{safe_name}.log"

    def _log_to_file(self, content: str) -> None:
        """Append content to the transcript log."""
        if not self.output_file:
            return
        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_file, "a") as f:
            f.write(content)

    def _log_prompt(self, prompt: str) -> None:
        self._log_to_file(f"[{datetime.now().strftime('%H:%M:%S')}] Prompt: {prompt}\n")

    def _log_response(self, text: str) -> None:
        self._log_to_file(f"\n[TEXT]\n{text}\n")

    def _log_event(self, label: str, detail: Any) -> None:
        self._log_to_file(f"[{label}] {detail}\n")
