"""Runner registry.

One ``PersistentRunner`` per channel, all sharing the session store and
the settings. Runners are independent: each owns its own queue, state
and process.
"""

from __future__ import annotations

import asyncio
import logging

from xangi.config import RunnerConfig
from xangi.lifecycle.sessions import SessionStore
from xangi.lifecycle.settings import SettingsStore
from xangi.runners.persistent import PersistentRunner

log = logging.getLogger("xangi.registry")


class RunnerRegistry:
    def __init__(
        self,
        config: RunnerConfig,
        sessions: SessionStore | None = None,
        settings: SettingsStore | None = None,
    ):
        self.config = config
        self.sessions = sessions
        self.settings = settings
        self._runners: dict[str, PersistentRunner] = {}

    def get(self, channel_id: str) -> PersistentRunner:
        """Return the channel's runner, creating it on first use."""
        channel_id = (channel_id or "").strip()
        if not channel_id:
            raise ValueError("channel_id is required")

        runner = self._runners.get(channel_id)
        if runner is None:
            runner = PersistentRunner(
                self.config,
                channel_id=channel_id,
                sessions=self.sessions,
                auto_restart=self.settings.auto_restart if self.settings else None,
            )
            self._runners[channel_id] = runner
            log.debug(f"Created runner for {channel_id}")
        return runner

    def peek(self, channel_id: str) -> PersistentRunner | None:
        return self._runners.get(channel_id)

    def pop(self, channel_id: str) -> PersistentRunner | None:
        return self._runners.pop(channel_id, None)

    def channels(self) -> list[str]:
        return sorted(self._runners)

    def shutdown_all(self) -> None:
        for runner in self._runners.values():
            runner.shutdown()

    async def aclose(self) -> None:
        runners = list(self._runners.values())
        self._runners.clear()
        if runners:
            log.info(f"Closing {len(runners)} runner(s)")
            await asyncio.gather(*(runner.aclose() for runner in runners))
