"""Persistent Claude Code runner.

One long-lived ``claude -p --input-format stream-json`` process serves a
channel. Prompts are queued and written to it one at a time; its stdout
events are matched to the single request in flight.

All state lives on the event loop. Supervisor callbacks only post
messages to the runner's inbox; one task per runner consumes the inbox
and performs every queue and state change, so handlers never interleave.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, AsyncIterator, Callable

from xangi.config import RunnerConfig
from xangi.runners.base import (
    BaseRunner,
    PendingRequest,
    RunnerState,
    RunResult,
    StreamCallbacks,
)
from xangi.runners.errors import (
    ProcessCrashed,
    RequestTimeout,
    ResultError,
    RunnerError,
    ShutdownError,
    StartupError,
)
from xangi.runners.events import Closed, Init, Result, TextDelta, Unrecognized
from xangi.runners.ports import RunnerEvent
from xangi.runners.stream import StreamParser, encode_request
from xangi.runners.supervisor import ProcessSupervisor

if TYPE_CHECKING:
    from xangi.lifecycle.sessions import SessionStore

log = logging.getLogger("xangi.runner")

_S = RunnerState
_TRANSITIONS: dict[RunnerState, set[RunnerState]] = {
    _S.IDLE: {_S.STARTING, _S.BUSY, _S.SHUTTING_DOWN, _S.DEAD},
    _S.STARTING: {_S.IDLE, _S.SHUTTING_DOWN, _S.DEAD},
    _S.BUSY: {_S.IDLE, _S.SHUTTING_DOWN, _S.DEAD},
    _S.SHUTTING_DOWN: {_S.DEAD},
    _S.DEAD: {_S.STARTING},
}

_WAKE = object()


class PersistentRunner(BaseRunner):
    """Serializes prompts through one Claude process per channel."""

    def __init__(
        self,
        config: RunnerConfig,
        *,
        channel_id: str | None = None,
        sessions: "SessionStore | None" = None,
        auto_restart: Callable[[], bool] | None = None,
    ):
        super().__init__(config.workdir, config.output_dir, channel_id)
        self.config = config
        self.channel_id = channel_id
        self.sessions = sessions
        self._auto_restart = auto_restart or (lambda: True)

        self._state = RunnerState.IDLE
        self._dead = asyncio.Event()
        self._queue: deque[PendingRequest] = deque()
        self._inflight: PendingRequest | None = None

        # Session of the current process instance, and the hint it was started with.
        self._session_id: str | None = None
        self._resume_id: str | None = None

        self._crashed = False
        self._last_returncode: int | None = None
        # True while a spawn is being awaited; shutdown() must not go DEAD then.
        self._spawning = False

        self._parser = StreamParser()
        self._inbox: asyncio.Queue | None = None
        self._task: asyncio.Task | None = None
        self._supervisor = ProcessSupervisor(config, self._on_output, self._on_close)

    # ------------------------------------------------------------------ #
    # Public surface
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def queue_length(self) -> int:
        """Requests waiting to be sent (the in-flight one is not counted)."""
        return sum(1 for request in self._queue if not request.settled)

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    def is_alive(self) -> bool:
        return self._supervisor.is_alive()

    async def submit(
        self,
        prompt: str,
        callbacks: StreamCallbacks | None = None,
        *,
        timeout: float | None = None,
    ) -> RunResult:
        """Queue a prompt and wait for its result.

        Raises ResultError, StartupError, ShutdownError, ProcessCrashed or
        RequestTimeout; a failed request never affects the others.
        """
        loop = asyncio.get_running_loop()
        request = PendingRequest(
            prompt=prompt,
            future=loop.create_future(),
            callbacks=callbacks or StreamCallbacks(),
        )
        if timeout is None:
            timeout = self.config.request_timeout_s
        if timeout is not None:
            request.timeout_handle = loop.call_later(timeout, self._expire, request, timeout)

        self._queue.append(request)
        log.info(f"[{self._label}] Queued {request.id[:8]}: {prompt[:50]}... (waiting={self.queue_length})")
        self._ensure_task()
        self._post(None, _WAKE)
        return await request.future

    async def run_stream(
        self, prompt: str, callbacks: StreamCallbacks, *, timeout: float | None = None
    ) -> RunResult:
        return await self.submit(prompt, callbacks, timeout=timeout)

    async def run(self, prompt: str) -> AsyncIterator[RunnerEvent]:
        """Submit a prompt, yielding (event_type, content) tuples.

        Events:
            ("text", str) - Response text as it streams
            ("session_id", str) - Session ID for continuity
            ("result", RunResult) - Final result
            ("error", str) - Error message
        """
        events: asyncio.Queue = asyncio.Queue()
        callbacks = StreamCallbacks(on_text=lambda delta, _total: events.put_nowait(("text", delta)))
        task = asyncio.ensure_future(self.submit(prompt, callbacks))
        task.add_done_callback(lambda _t: events.put_nowait(None))
        try:
            while (item := await events.get()) is not None:
                yield item
            try:
                result = task.result()
            except RunnerError as e:
                yield ("error", str(e))
                return
            if result.session_id:
                yield ("session_id", result.session_id)
            yield ("result", result)
        finally:
            if not task.done():
                task.cancel()

    def shutdown(self) -> None:
        """Stop the process and reject every request not yet sent.

        Queued requests are rejected before this returns. The in-flight
        request is rejected when the process has exited.
        """
        previous = self._state
        rejected = self._reject_queued(ShutdownError("Runner shut down before the request was sent"))
        self._crashed = False

        if previous is RunnerState.DEAD and not self._supervisor.has_process():
            return
        if previous is not RunnerState.SHUTTING_DOWN:
            self._set_state(RunnerState.SHUTTING_DOWN)
        log.info(f"[{self._label}] Shutting down ({rejected} queued request(s) rejected)")

        if self._supervisor.has_process():
            self._supervisor.terminate(self.config.shutdown_grace_s)
        elif not self._spawning:
            request, self._inflight = self._inflight, None
            if request is not None:
                request.reject(ShutdownError("Runner shut down"))
            self._set_state(RunnerState.DEAD)

    def cancel(self) -> None:
        self.shutdown()

    async def wait_closed(self) -> None:
        """Wait until the runner has no process left."""
        if self._state is RunnerState.IDLE and not self._supervisor.has_process():
            return
        await self._dead.wait()

    async def aclose(self) -> None:
        self.shutdown()
        await self.wait_closed()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    # ------------------------------------------------------------------ #
    # Event task
    # ------------------------------------------------------------------ #

    @property
    def _label(self) -> str:
        return self.channel_id or "runner"

    def _ensure_task(self) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_events(), name=f"xangi-{self._label}")

    def _post(self, generation: int | None, message: object) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        self._inbox.put_nowait((generation, message))

    def _on_output(self, generation: int, chunk: bytes) -> None:
        for event in self._parser.feed(chunk):
            self._post(generation, event)

    def _on_close(self, generation: int, returncode: int | None) -> None:
        for event in self._parser.flush():
            self._post(generation, event)
        self._post(generation, Closed(returncode))

    async def _run_events(self) -> None:
        assert self._inbox is not None
        while True:
            generation, message = await self._inbox.get()
            try:
                await self._handle(generation, message)
            except Exception:
                log.exception(f"[{self._label}] Runner event handler failed")

    async def _handle(self, generation: int | None, message: object) -> None:
        if message is _WAKE:
            await self._dispatch()
            return
        if generation != self._supervisor.generation:
            log.debug(f"[{self._label}] Dropping {type(message).__name__} from an old process")
            return

        if isinstance(message, Init):
            self._handle_init(message)
        elif isinstance(message, TextDelta):
            await self._handle_text(message)
        elif isinstance(message, Result):
            await self._handle_result(message)
        elif isinstance(message, Closed):
            await self._handle_closed(message)
        elif isinstance(message, Unrecognized):
            log.debug(f"[{self._label}] Ignoring line ({message.reason}): {message.line[:200]}")

    # ------------------------------------------------------------------ #
    # Dispatcher
    # ------------------------------------------------------------------ #

    async def _dispatch(self) -> None:
        if self._inflight is not None or self._state is RunnerState.SHUTTING_DOWN:
            return
        self._drop_settled()
        if not self._queue:
            return

        if not self._supervisor.is_alive():
            if self._supervisor.has_process():
                # Exiting; its Closed message will dispatch again.
                return
            if not await self._start():
                return
            self._drop_settled()
            if not self._queue:
                return

        request = self._queue.popleft()
        self._inflight = request
        self._set_state(RunnerState.BUSY)
        waited = time.monotonic() - request.submitted_at
        log.info(f"[{self._label}] Sending {request.id[:8]} (waited {waited:.1f}s, waiting={self.queue_length})")
        self._log_prompt(request.prompt)
        payload = encode_request(request.prompt, self._session_id or self._resume_id)
        if not await self._supervisor.send(payload):
            # Stays in flight; the Closed message rejects it.
            log.warning(f"[{self._label}] Could not write {request.id[:8]} to Claude; waiting for the process to close")

    async def _start(self) -> bool:
        if self._state is RunnerState.DEAD and not self._auto_restart():
            log.warning(f"[{self._label}] Restart disabled; rejecting queued requests")
            self._reject_queued(self._stopped_error())
            return False

        resume = self._session_id or self._stored_session()
        self._set_state(RunnerState.STARTING)
        self._parser = StreamParser()
        self._spawning = True
        try:
            await self._supervisor.start(resume_session_id=resume)
        except StartupError as e:
            self._set_state(RunnerState.DEAD)
            self._reject_queued(e)
            return False
        finally:
            self._spawning = False

        self._session_id = None
        self._resume_id = resume
        if self._state is not RunnerState.STARTING:
            log.info(f"[{self._label}] Shutdown requested during startup")
            self._supervisor.terminate(self.config.shutdown_grace_s)
            return False
        self._set_state(RunnerState.IDLE)
        return True

    def _stopped_error(self) -> RunnerError:
        if self._crashed:
            return ProcessCrashed(self._last_returncode)
        return ShutdownError("Runner is stopped and restart is disabled")

    def _expire(self, request: PendingRequest, timeout_s: float) -> None:
        request.timeout_handle = None
        if request.settled:
            return
        if request is self._inflight:
            # The process is still working on it; the slot frees when its result arrives.
            request.orphaned = True
            log.warning(f"[{self._label}] {request.id[:8]} timed out after {timeout_s:g}s in flight")
        else:
            with contextlib.suppress(ValueError):
                self._queue.remove(request)
            log.warning(f"[{self._label}] {request.id[:8]} timed out after {timeout_s:g}s in queue")
        request.reject(RequestTimeout(timeout_s))

    def _reject_queued(self, error: RunnerError) -> int:
        rejected = 0
        while self._queue:
            if self._queue.popleft().reject(error):
                rejected += 1
        return rejected

    def _drop_settled(self) -> None:
        while self._queue and self._queue[0].settled:
            self._queue.popleft()

    # ------------------------------------------------------------------ #
    # Correlator
    # ------------------------------------------------------------------ #

    def _handle_init(self, event: Init) -> None:
        self._session_id = event.session_id
        log.info(f"[{self._label}] Session {event.session_id}")
        self._log_event("SESSION", event.session_id)

    async def _handle_text(self, event: TextDelta) -> None:
        request = self._inflight
        if request is None or request.settled:
            log.debug(f"[{self._label}] Discarding text with no live request")
            return
        request.text += event.text
        self._log_response(event.text)
        await self._invoke(request.callbacks.on_text, event.text, request.text)

    async def _handle_result(self, event: Result) -> None:
        if event.session_id:
            self._session_id = event.session_id
            self._remember_session(event.session_id)

        request, self._inflight = self._inflight, None
        if request is None:
            log.warning(f"[{self._label}] Discarding result with no request in flight")
            return

        if request.settled:
            log.info(f"[{self._label}] Discarding result for settled {request.id[:8]} (orphaned={request.orphaned})")
        elif event.is_error:
            error = ResultError(event.result, event.session_id)
            log.warning(f"[{self._label}] {request.id[:8]} failed: {event.result[:200]}")
            self._log_event("ERROR", event.result)
            await self._invoke(request.callbacks.on_error, error)
            request.reject(error)
        else:
            result = RunResult(event.result, event.session_id or self._session_id)
            log.info(f"[{self._label}] {request.id[:8]} done ({len(event.result)} chars)")
            await self._invoke(request.callbacks.on_complete, result)
            request.resolve(result)

        if self._state is RunnerState.BUSY:
            self._set_state(RunnerState.IDLE)
        await self._dispatch()

    async def _handle_closed(self, event: Closed) -> None:
        self._last_returncode = event.returncode
        if self._state is RunnerState.DEAD:
            # shutdown() already settled everything after the process went away.
            return

        request, self._inflight = self._inflight, None

        if self._state is RunnerState.SHUTTING_DOWN:
            self._crashed = False
            if request is not None:
                request.reject(ShutdownError("Runner shut down while the request was running"))
        else:
            self._crashed = True
            if request is not None and not request.settled:
                error = ProcessCrashed(event.returncode)
                log.error(f"[{self._label}] {request.id[:8]} lost: {error}")
                await self._invoke(request.callbacks.on_error, error)
                request.reject(error)

        self._set_state(RunnerState.DEAD)
        await self._dispatch()

    def _stored_session(self) -> str | None:
        if self.sessions is None or not self.channel_id:
            return None
        return self.sessions.get(self.channel_id)

    def _remember_session(self, session_id: str) -> None:
        if self.sessions is not None and self.channel_id:
            self.sessions.set(self.channel_id, session_id)

    async def _invoke(self, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            log.exception(f"[{self._label}] Stream callback failed")

    def _set_state(self, new: RunnerState) -> None:
        old = self._state
        if new is old:
            return
        if new not in _TRANSITIONS[old]:
            raise RuntimeError(f"Invalid runner transition {old.value} -> {new.value}")
        self._state = new
        if new is RunnerState.DEAD:
            self._dead.set()
        else:
            self._dead.clear()
        log.debug(f"[{self._label}] {old.value} -> {new.value}")
