"""Session lifecycle: channel -> Claude session ID, persisted as JSON.

Goal: keep session create/reset semantics in one place so the runners,
the registry and the CLI don't drift.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from xangi.runners.registry import RunnerRegistry

_log = logging.getLogger("xangi.sessions")


class SessionStore:
    """Maps channel IDs to session IDs in ``<data_dir>/sessions.json``.

    The file is read once on construction and rewritten after every
    change. I/O failures are logged; a missing or corrupt file loads as
    an empty map.
    """

    def __init__(self, data_dir: Path | str):
        self.path = Path(data_dir) / "sessions.json"
        self._sessions: dict[str, str] = {}
        self._load()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._sessions

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._sessions.items())

    def get(self, channel_id: str) -> str | None:
        return self._sessions.get(channel_id)

    def set(self, channel_id: str, session_id: str) -> None:
        if self._sessions.get(channel_id) == session_id:
            return
        self._sessions[channel_id] = session_id
        self._save()

    def delete(self, channel_id: str) -> bool:
        if self._sessions.pop(channel_id, None) is None:
            return False
        self._save()
        return True

    def clear(self) -> None:
        self._sessions.clear()
        self._save()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # ValueError covers bad JSON and invalid UTF-8
            _log.error(f"Failed to load sessions from {self.path}: {e}")
            return
        if not isinstance(data, dict):
            _log.error(f"Ignoring {self.path}: expected a JSON object")
            return
        self._sessions = {str(k): v for k, v in data.items() if isinstance(v, str)}
        _log.info(f"Loaded {len(self._sessions)} sessions from {self.path}")

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._sessions, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            _log.error(f"Failed to save sessions to {self.path}: {e}")


async def reset_session(
    registry: "RunnerRegistry",
    sessions: SessionStore,
    channel_id: str,
) -> bool:
    """Start the channel over with a fresh conversation.

    Semantics:
    - Drop the channel's runner from the registry and shut it down
      (queued prompts are rejected)
    - Delete the stored session ID, so the next runner starts without --resume

    Returns True if anything was reset.
    """
    runner = registry.pop(channel_id)
    if runner is not None:
        await runner.aclose()
    deleted = sessions.delete(channel_id)
    _log.info(f"Reset session for {channel_id} (stored={deleted}, runner={runner is not None})")
    return deleted or runner is not None
