"""Environment configuration.

Configuration lives at the adapter boundary: runners take a frozen
``RunnerConfig`` and never read the environment themselves.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_TRUE = {"1", "true", "yes", "on"}


def load_env(path: Path | None = None) -> bool:
    """Load a .env file (default: ./.env) without overriding the environment."""
    return load_dotenv(path or Path.cwd() / ".env", override=False)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


def _env_float(name: str) -> float | None:
    value = (os.getenv(name) or "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class RunnerConfig:
    workdir: str = "."
    command: tuple[str, ...] = ("claude",)
    skip_permissions: bool = False
    model: str | None = None
    extra_args: tuple[str, ...] = ()
    shutdown_grace_s: float = 5.0
    request_timeout_s: float | None = None

    # Transcript logs (<output_dir>/<channel>.log); disabled when None.
    output_dir: Path | None = None

    @classmethod
    def from_env(cls, **overrides) -> "RunnerConfig":
        command = os.getenv("CLAUDE_COMMAND", "").strip()
        grace = _env_float("XANGI_SHUTDOWN_GRACE")
        values: dict[str, object] = {
            "workdir": os.getenv("WORKSPACE_PATH") or os.getcwd(),
            "command": tuple(shlex.split(command)) if command else ("claude",),
            "skip_permissions": _env_flag("SKIP_PERMISSIONS"),
            "model": os.getenv("CLAUDE_MODEL") or None,
            "shutdown_grace_s": 5.0 if grace is None else grace,
            "request_timeout_s": _env_float("XANGI_REQUEST_TIMEOUT"),
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class AppConfig:
    """Paths shared by the stores and the runners."""

    workdir: Path
    data_dir: Path
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        workdir = Path(os.getenv("WORKSPACE_PATH") or os.getcwd()).expanduser()
        data_dir = Path(os.getenv("XANGI_DATA_DIR") or workdir / ".xangi").expanduser()
        runner = RunnerConfig.from_env(workdir=str(workdir), output_dir=data_dir / "logs")
        return cls(
            workdir=workdir,
            data_dir=data_dir,
            runner=runner,
            log_level=(os.getenv("XANGI_LOG_LEVEL") or "INFO").upper(),
        )
