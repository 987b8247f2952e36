"""Owner of the Claude process and its stdio streams."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from typing import Callable

from xangi.config import RunnerConfig
from xangi.runners.errors import StartupError

log = logging.getLogger("xangi.supervisor")

_READ_CHUNK = 64 * 1024

OutputCallback = Callable[[int, bytes], None]
CloseCallback = Callable[[int, "int | None"], None]


class ProcessSupervisor:
    """Spawns, feeds and terminates one Claude process at a time.

    Every spawn gets a new generation number which is passed to the
    output and close callbacks, so consumers can drop messages from a
    process they have already written off.

    The exit watcher is the only code path that declares a process
    closed; ``terminate()`` and the kill timer only send signals.
    """

    def __init__(
        self,
        config: RunnerConfig,
        on_output: OutputCallback,
        on_close: CloseCallback,
    ):
        self.config = config
        self.generation = 0
        self._on_output = on_output
        self._on_close = on_close
        self._process: asyncio.subprocess.Process | None = None
        self._terminating = False
        self._kill_timer: asyncio.TimerHandle | None = None
        self._watch_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._closed: asyncio.Event | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def build_command(self, resume_session_id: str | None = None) -> list[str]:
        """Build the claude command line."""
        cmd = [
            *self.config.command,
            "-p",
            "--input-format", "stream-json",
            "--output-format", "stream-json",
            "--verbose",
        ]
        if self.config.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        if resume_session_id:
            cmd.extend(["--resume", resume_session_id])
        cmd.extend(self.config.extra_args)
        return cmd

    def is_alive(self) -> bool:
        process = self._process
        return (
            process is not None
            and process.returncode is None
            and not self._terminating
        )

    def has_process(self) -> bool:
        """True until the current process (alive or terminating) has closed."""
        return self._process is not None

    async def start(self, resume_session_id: str | None = None) -> asyncio.subprocess.Process:
        if self._process is not None and self.is_alive():
            return self._process
        if self._process is not None:
            raise StartupError("Previous Claude process is still shutting down")

        cmd = self.build_command(resume_session_id)
        log.info(f"Starting Claude: {shlex.join(cmd)} (cwd={self.config.workdir})")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.workdir,
            )
        except OSError as e:
            log.error(f"Failed to start Claude: {e}")
            raise StartupError(f"Failed to start {cmd[0]}: {e}") from e

        self.generation += 1
        self._process = process
        self._terminating = False
        self._closed = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch(process, self.generation))
        self._stderr_task = asyncio.create_task(self._drain_stderr(process))
        log.info(f"Claude started (pid={process.pid}, generation={self.generation})")
        return process

    async def send(self, payload: bytes) -> bool:
        """Write to the process's stdin. Returns False if nothing was written."""
        process = self._process
        if process is None or process.stdin is None or not self.is_alive():
            log.warning("Dropping write: Claude process is not running")
            return False
        try:
            process.stdin.write(payload)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            log.warning(f"Write to Claude stdin failed: {e}")
            return False
        return True

    def terminate(self, grace_s: float) -> None:
        """SIGTERM now, SIGKILL if still running after ``grace_s``."""
        process = self._process
        if process is None or self._terminating:
            return
        self._terminating = True

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is not None:
            return

        log.info(f"Terminating Claude (pid={process.pid}, grace={grace_s:g}s)")
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        loop = asyncio.get_running_loop()
        self._kill_timer = loop.call_later(grace_s, self._force_kill, process)

    async def wait_closed(self) -> None:
        if self._process is not None and self._closed is not None:
            await self._closed.wait()

    def _force_kill(self, process: asyncio.subprocess.Process) -> None:
        self._kill_timer = None
        if self._process is not process or process.returncode is not None:
            return
        log.warning(f"Claude did not exit in time, killing (pid={process.pid})")
        with contextlib.suppress(ProcessLookupError):
            process.kill()

    async def _watch(self, process: asyncio.subprocess.Process, generation: int) -> None:
        assert process.stdout is not None
        try:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                self._on_output(generation, chunk)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Error reading Claude stdout")
            with contextlib.suppress(ProcessLookupError):
                process.kill()

        returncode = await process.wait()
        self._declare_closed(process, generation, returncode)

    def _declare_closed(
        self, process: asyncio.subprocess.Process, generation: int, returncode: int | None
    ) -> None:
        if self._process is not process:
            return
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
        was_terminating = self._terminating
        self._process = None
        self._terminating = False
        if self._closed is not None:
            self._closed.set()

        if was_terminating:
            log.info(f"Claude exited (pid={process.pid}, code={returncode})")
        else:
            log.warning(f"Claude exited unexpectedly (pid={process.pid}, code={returncode})")
        self._on_close(generation, returncode)

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            chunk = await process.stderr.read(_READ_CHUNK)
            if not chunk:
                return
            for line in chunk.decode(errors="replace").splitlines():
                if line.strip():
                    log.debug(f"claude stderr: {line}")
