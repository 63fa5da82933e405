"""
Unit tests for LysisConfig loading.
"""

import json

import pytest

from lysis.core.config import (
    LoggingConfig,
    LysisConfig,
    RetryConfig,
    SchedulerConfig,
    get_config,
    set_config,
)
from lysis.core.types import Role
from lysis.utils.logging import get_logger


class TestDefaults:
    """Test default values."""

    def test_defaults(self) -> None:
        config = LysisConfig()

        assert config.model.name == "gemini-2.5-flash"
        assert config.scheduler.min_delay == 0.8
        assert config.retry.max_retries == 3
        assert config.loops.manager_max_loops == 10
        assert config.loops.worker_max_loops == 25
        assert config.agent.response_timeout == 60.0
        assert config.agent.runtime_error_debounce == 5.0
        assert config.workspace.mock_mode is False

    def test_keys_for_role(self) -> None:
        config = LysisConfig()
        config.keys.worker2 = "a,b"
        assert config.keys.for_role(Role.WORKER2) == "a,b"


class TestFromEnv:
    """Test environment loading."""

    def test_reads_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LYSIS_MIN_DELAY", "1.5")
        monkeypatch.setenv("LYSIS_MAX_RETRIES", "6")
        monkeypatch.setenv("LYSIS_MOCK_MODE", "yes")
        monkeypatch.setenv("LYSIS_AGENT_KEYS", "k1,k2")
        monkeypatch.setenv("LYSIS_WORKER_MAX_LOOPS", "12")

        config = LysisConfig.from_env()

        assert config.scheduler.min_delay == 1.5
        assert config.retry.max_retries == 6
        assert config.workspace.mock_mode is True
        assert config.keys.agent == "k1,k2"
        assert config.loops.worker_max_loops == 12

    def test_unset_variables_use_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("LYSIS_MIN_DELAY", "LYSIS_MOCK_MODE", "LYSIS_FALLBACK_KEYS"):
            monkeypatch.delenv(name, raising=False)

        config = LysisConfig.from_env()

        assert config.scheduler.min_delay == 0.8
        assert config.workspace.mock_mode is False
        assert config.keys.fallback == ""


class TestFromFile:
    """Test YAML loading."""

    def test_sections(self, tmp_path) -> None:
        path = tmp_path / "lysis.yaml"
        path.write_text(
            "scheduler:\n  min_delay: 2.0\n"
            "retry:\n  max_retries: 5\n  rotation_delay: 0.1\n"
            "workspace:\n  root: ./app\n  mock_mode: true\n"
        )

        config = LysisConfig.from_file(path)

        assert config.scheduler == SchedulerConfig(min_delay=2.0)
        assert config.retry == RetryConfig(max_retries=5, rotation_delay=0.1)
        assert config.workspace.root == "./app"
        assert config.workspace.mock_mode is True
        assert config.loops.manager_max_loops == 10

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            LysisConfig.from_file(tmp_path / "absent.yaml")

    def test_empty_file(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert LysisConfig.from_file(path) == LysisConfig()


class TestSerialization:
    """Test to_dict and the global instance."""

    def test_to_dict_omits_credentials(self) -> None:
        config = LysisConfig()
        config.keys.agent = "secret-key"

        data = config.to_dict()

        assert "keys" not in data
        assert "secret-key" not in str(data)
        assert data["scheduler"]["min_delay"] == 0.8

    def test_global_config(self) -> None:
        custom = LysisConfig(scheduler=SchedulerConfig(min_delay=3.0))
        set_config(custom)
        try:
            assert get_config() is custom
        finally:
            set_config(None)  # type: ignore[arg-type]


class TestLogging:
    """Test that logging settings reach structlog."""

    def test_reads_log_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.setenv("LOG_JSON", "true")
        monkeypatch.delenv("LOG_FILE", raising=False)

        config = LysisConfig.from_env()

        assert config.logging == LoggingConfig(level="ERROR", json_format=True)

    def test_apply_filters_below_level(self, capsys: pytest.CaptureFixture[str], restore_logging) -> None:
        logger = get_logger("lysis.test")

        LoggingConfig(level="ERROR").apply()
        logger.info("routine detail")
        logger.error("broken pipeline")

        out = capsys.readouterr().out
        assert "broken pipeline" in out
        assert "routine detail" not in out

    def test_apply_json_format(self, capsys: pytest.CaptureFixture[str], restore_logging) -> None:
        LoggingConfig(json_format=True).apply()
        get_logger("lysis.test").info("keys rotated", role="agent")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "keys rotated"
        assert record["role"] == "agent"
        assert record["level"] == "info"
