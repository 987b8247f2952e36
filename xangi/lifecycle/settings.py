"""Runtime settings stored in ``<workdir>/settings.json``."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path

_log = logging.getLogger("xangi.settings")


@dataclass(frozen=True)
class Settings:
    auto_restart: bool = True

    @classmethod
    def from_json(cls, data: dict) -> "Settings":
        default = cls()
        auto_restart = data.get("autoRestart", default.auto_restart)
        if not isinstance(auto_restart, bool):
            auto_restart = default.auto_restart
        return cls(auto_restart=auto_restart)

    def to_json(self) -> dict:
        return {"autoRestart": self.auto_restart}


class SettingsStore:
    """Cached reader/writer for the settings file."""

    def __init__(self, workdir: Path | str):
        self.path = Path(workdir) / "settings.json"
        self._cached: Settings | None = None

    def load(self) -> Settings:
        if self._cached is not None:
            return self._cached
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self._cached = Settings.from_json(data) if isinstance(data, dict) else Settings()
        except (OSError, ValueError):
            # Missing, unreadable or undecodable file -> defaults
            self._cached = Settings()
        return self._cached

    def save(self, **changes: object) -> Settings:
        merged = replace(self.load(), **changes)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(merged.to_json(), indent=2) + "\n", encoding="utf-8")
        self._cached = merged
        _log.info(f"Settings saved: {merged.to_json()}")
        return merged

    def clear_cache(self) -> None:
        self._cached = None

    def auto_restart(self) -> bool:
        return self.load().auto_restart


def format_settings(settings: Settings) -> str:
    status = "ON" if settings.auto_restart else "OFF"
    return "\n".join(["Current settings", f"- Auto restart: {status}"])
