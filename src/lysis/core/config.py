"""
Lysis Configuration System.

Supports loading from environment variables, YAML files, and programmatic configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from lysis.core.types import Role
from lysis.utils.logging import setup_logging


@dataclass
class ModelConfig:
    """Configuration for the upstream generation model."""

    name: str = "gemini-2.5-flash"
    temperature: float | None = None
    timeout: float = 120.0  # Seconds per upstream request


@dataclass
class SchedulerConfig:
    """Configuration for the upstream call scheduler."""

    min_delay: float = 0.8  # Seconds between task starts
    spacing: float | None = None  # Pause after each task settles; defaults to min_delay


@dataclass
class RetryConfig:
    """Configuration for key rotation and backoff."""

    max_retries: int = 3
    rotation_delay: float = 0.5
    backoff_base: float = 1.0
    backoff_cap: float = 5.0  # Multiple of backoff_base


@dataclass
class LoopConfig:
    """Iteration bounds for the tool loops."""

    manager_max_loops: int = 10
    worker_max_loops: int = 25


@dataclass
class AgentConfig:
    """Configuration for the application-level agent behavior."""

    response_timeout: float = 60.0  # Watchdog for the chat path
    runtime_error_debounce: float = 5.0
    status_updates: bool = True
    mock_command_delay: float = 1.5  # Simulated shell latency in mock mode


@dataclass
class WorkspaceConfig:
    """Configuration for the file system and key store locations."""

    root: str = "."
    mock_mode: bool = False
    key_store_path: str = "~/.lysis/keys.json"


@dataclass
class KeysConfig:
    """Comma-separated credential seeds per role."""

    agent: str = ""
    worker1: str = ""
    worker2: str = ""
    fallback: str = ""  # Development-only key set used when a role has none

    def for_role(self, role: Role) -> str:
        return getattr(self, role.value)


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    json_format: bool = False
    log_file: str | None = None

    def apply(self) -> None:
        """Reconfigure structlog with these settings."""
        setup_logging(self.level, self.json_format, self.log_file)


@dataclass
class LysisConfig:
    """
    Master configuration for Lysis.

    Can be created from:
    - Environment variables (load with from_env())
    - YAML file (load with from_file())
    - Programmatically (direct instantiation)

    Example:
        # From environment
        config = LysisConfig.from_env()

        # From file
        config = LysisConfig.from_file("lysis.yaml")

        # Programmatic
        config = LysisConfig(
            scheduler=SchedulerConfig(min_delay=1.5),
            retry=RetryConfig(max_retries=6),
        )
    """

    model: ModelConfig = field(default_factory=ModelConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    loops: LoopConfig = field(default_factory=LoopConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    keys: KeysConfig = field(default_factory=KeysConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> LysisConfig:
        """
        Load configuration from environment variables.

        Args:
            dotenv_path: Optional path to .env file

        Returns:
            LysisConfig instance
        """
        if dotenv_path:
            load_dotenv(dotenv_path)
        else:
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            return os.getenv(key, default)

        def get_env_int(key: str, default: int) -> int:
            val = os.getenv(key)
            return int(val) if val else default

        def get_env_float(key: str, default: float) -> float:
            val = os.getenv(key)
            return float(val) if val else default

        def get_env_bool(key: str, default: bool) -> bool:
            val = os.getenv(key, "").lower()
            if val in ("true", "1", "yes"):
                return True
            if val in ("false", "0", "no"):
                return False
            return default

        return cls(
            model=ModelConfig(
                name=get_env("LYSIS_MODEL", "gemini-2.5-flash"),
                timeout=get_env_float("LYSIS_REQUEST_TIMEOUT", 120.0),
            ),
            scheduler=SchedulerConfig(
                min_delay=get_env_float("LYSIS_MIN_DELAY", 0.8),
            ),
            retry=RetryConfig(
                max_retries=get_env_int("LYSIS_MAX_RETRIES", 3),
            ),
            loops=LoopConfig(
                manager_max_loops=get_env_int("LYSIS_MANAGER_MAX_LOOPS", 10),
                worker_max_loops=get_env_int("LYSIS_WORKER_MAX_LOOPS", 25),
            ),
            agent=AgentConfig(
                response_timeout=get_env_float("LYSIS_RESPONSE_TIMEOUT", 60.0),
            ),
            workspace=WorkspaceConfig(
                root=get_env("LYSIS_WORKSPACE", "."),
                mock_mode=get_env_bool("LYSIS_MOCK_MODE", False),
                key_store_path=get_env("LYSIS_KEY_STORE", "~/.lysis/keys.json"),
            ),
            keys=KeysConfig(
                agent=get_env("LYSIS_AGENT_KEYS", ""),
                worker1=get_env("LYSIS_WORKER1_KEYS", ""),
                worker2=get_env("LYSIS_WORKER2_KEYS", ""),
                fallback=get_env("LYSIS_FALLBACK_KEYS", ""),
            ),
            logging=LoggingConfig(
                level=get_env("LOG_LEVEL", "INFO"),
                json_format=get_env_bool("LOG_JSON", False),
                log_file=get_env("LOG_FILE") or None,
            ),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> LysisConfig:
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            LysisConfig instance
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> LysisConfig:
        """Create config from dictionary."""
        sections: dict[str, Any] = {}
        for section in fields(cls):
            section_data = data.get(section.name)
            if section_data:
                section_type = section.default_factory  # each section is its own factory
                sections[section.name] = section_type(**section_data)  # type: ignore[misc]
        return cls(**sections)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary (credentials omitted)."""
        return {
            "model": {"name": self.model.name},
            "scheduler": {
                "min_delay": self.scheduler.min_delay,
                "spacing": self.scheduler.spacing,
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "rotation_delay": self.retry.rotation_delay,
                "backoff_base": self.retry.backoff_base,
            },
            "loops": {
                "manager_max_loops": self.loops.manager_max_loops,
                "worker_max_loops": self.loops.worker_max_loops,
            },
            "workspace": {
                "root": self.workspace.root,
                "mock_mode": self.workspace.mock_mode,
            },
        }


# Global config instance (can be overridden)
_global_config: LysisConfig | None = None


def get_config() -> LysisConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = LysisConfig.from_env()
    return _global_config


def set_config(config: LysisConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config
