"""Tests for environment configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from xangi.config import AppConfig, RunnerConfig, load_env

_VARS = (
    "WORKSPACE_PATH",
    "XANGI_DATA_DIR",
    "CLAUDE_COMMAND",
    "CLAUDE_MODEL",
    "SKIP_PERMISSIONS",
    "XANGI_SHUTDOWN_GRACE",
    "XANGI_REQUEST_TIMEOUT",
    "XANGI_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _VARS:
        # setenv first so monkeypatch restores values written by load_dotenv
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestRunnerConfig:
    def test_defaults(self, clean_env, tmp_path):
        config = RunnerConfig.from_env()
        assert config.workdir == str(tmp_path)
        assert config.command == ("claude",)
        assert config.skip_permissions is False
        assert config.model is None
        assert config.shutdown_grace_s == 5.0
        assert config.request_timeout_s is None

    def test_reads_environment(self, clean_env):
        clean_env.setenv("CLAUDE_COMMAND", "npx '@anthropic-ai/claude-code'")
        clean_env.setenv("CLAUDE_MODEL", "sonnet")
        clean_env.setenv("SKIP_PERMISSIONS", "true")
        clean_env.setenv("XANGI_SHUTDOWN_GRACE", "2.5")
        clean_env.setenv("XANGI_REQUEST_TIMEOUT", "30")

        config = RunnerConfig.from_env()
        assert config.command == ("npx", "@anthropic-ai/claude-code")
        assert config.model == "sonnet"
        assert config.skip_permissions is True
        assert config.shutdown_grace_s == 2.5
        assert config.request_timeout_s == 30.0

    def test_overrides_win(self, clean_env):
        clean_env.setenv("CLAUDE_MODEL", "sonnet")
        assert RunnerConfig.from_env(model="opus").model == "opus"

    def test_zero_grace_is_kept(self, clean_env):
        clean_env.setenv("XANGI_SHUTDOWN_GRACE", "0")
        assert RunnerConfig.from_env().shutdown_grace_s == 0.0

    def test_bad_number(self, clean_env):
        clean_env.setenv("XANGI_REQUEST_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="XANGI_REQUEST_TIMEOUT"):
            RunnerConfig.from_env()


class TestAppConfig:
    def test_paths_default_under_workspace(self, clean_env, tmp_path):
        clean_env.setenv("WORKSPACE_PATH", str(tmp_path / "ws"))
        app = AppConfig.from_env()
        assert app.workdir == tmp_path / "ws"
        assert app.data_dir == tmp_path / "ws" / ".xangi"
        assert app.runner.workdir == str(tmp_path / "ws")
        assert app.runner.output_dir == tmp_path / "ws" / ".xangi" / "logs"
        assert app.log_level == "INFO"

    def test_data_dir_and_log_level(self, clean_env, tmp_path):
        clean_env.setenv("XANGI_DATA_DIR", str(tmp_path / "data"))
        clean_env.setenv("XANGI_LOG_LEVEL", "debug")
        app = AppConfig.from_env()
        assert app.data_dir == tmp_path / "data"
        assert app.log_level == "DEBUG"


class TestLoadEnv:
    def test_dotenv_does_not_override(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("CLAUDE_MODEL=haiku\nXANGI_LOG_LEVEL=warning\n")
        clean_env.setenv("CLAUDE_MODEL", "opus")

        assert load_env(env_file) is True
        assert RunnerConfig.from_env().model == "opus"
        assert AppConfig.from_env().log_level == "WARNING"

    def test_missing_file(self, clean_env, tmp_path):
        assert load_env(Path(tmp_path / "nope.env")) is False
