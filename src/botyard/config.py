"""Configuration loading and validation for Botyard.

This is the process-level configuration (where data lives, how to log,
timing knobs). Per-bot configuration lives in the ConfigStore, see
``botyard.store``.
"""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "botyard.db"


class SupervisorConfig(BaseModel):
    """Bot supervisor configuration."""

    watch_interval_seconds: float = 2.0
    ready_timeout_seconds: float = 30.0
    auto_start: bool = True  # Start bots with settings.autoStart on serve

    @field_validator("watch_interval_seconds", "ready_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Intervals must be positive."""
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v


class SchedulerConfig(BaseModel):
    """Announcement scheduler configuration."""

    timezone: str = "UTC"
    initial_check: bool = True  # Poll once immediately when a job is armed

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone is a known IANA name."""
        if v == "UTC":
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class HttpConfig(BaseModel):
    """Outbound HTTP settings for third-party service clients."""

    timeout_seconds: float = 10.0
    user_agent: str = "Botyard/0.1"


class ApiConfig(BaseModel):
    """Admin API configuration."""

    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )


class NotificationsConfig(BaseModel):
    """Live notification fan-out configuration."""

    queue_size: int = 100


class Config(BaseModel):
    """Root configuration for Botyard."""

    data_dir: Path = Path("./data")
    log_level: str = "INFO"
    log_json: bool = True

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @property
    def database_path(self) -> Path:
        """Get full path to database file."""
        return self.data_dir / self.database.path

    @classmethod
    def load(cls, config_path: Path | str = Path("config.yaml")) -> "Config":
        """Load configuration from YAML file with env var overlay.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        # Environment variable overrides
        if "BOTYARD_DATA_DIR" in os.environ:
            yaml_config["data_dir"] = os.environ["BOTYARD_DATA_DIR"]
        if "BOTYARD_LOG_LEVEL" in os.environ:
            yaml_config["log_level"] = os.environ["BOTYARD_LOG_LEVEL"]
        if "BOTYARD_LOG_JSON" in os.environ:
            yaml_config["log_json"] = os.environ["BOTYARD_LOG_JSON"].lower() == "true"

        return cls.model_validate(yaml_config)

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        Args:
            config_path: Optional path to YAML configuration file.

        Returns:
            Config instance (from file or defaults).
        """
        if config_path is None:
            for path in [Path("config.yaml"), Path("config.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls()

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls()
