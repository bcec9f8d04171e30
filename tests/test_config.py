"""Tests for process configuration loading and validation."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from botyard.config import Config


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        config = Config()
        assert config.data_dir == Path("./data")
        assert config.log_level == "INFO"
        assert config.log_json is True
        assert config.api.port == 3000
        assert config.scheduler.timezone == "UTC"
        assert config.scheduler.initial_check is True
        assert config.supervisor.watch_interval_seconds == 2.0
        assert config.notifications.queue_size == 100

    def test_database_path_joins_data_dir(self, tmp_path: Path) -> None:
        config = Config(data_dir=tmp_path, database={"path": "bots.db"})
        assert config.database_path == tmp_path / "bots.db"


class TestValidation:
    """Tests for field validators."""

    def test_log_level_is_uppercased(self) -> None:
        assert Config(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Config(log_level="LOUD")

    def test_known_timezone_accepted(self) -> None:
        config = Config(scheduler={"timezone": "Europe/Berlin"})
        assert config.scheduler.timezone == "Europe/Berlin"

    def test_unknown_timezone_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown timezone"):
            Config(scheduler={"timezone": "Mars/Olympus_Mons"})

    def test_non_positive_watch_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Config(supervisor={"watch_interval_seconds": 0})


class TestLoading:
    """Tests for YAML loading and environment overrides."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.dump(
                {
                    "data_dir": str(tmp_path / "data"),
                    "log_level": "WARNING",
                    "api": {"host": "0.0.0.0", "port": 8080},
                    "scheduler": {"timezone": "America/New_York"},
                }
            )
        )

        config = Config.load(path)

        assert config.data_dir == tmp_path / "data"
        assert config.log_level == "WARNING"
        assert config.api.host == "0.0.0.0"
        assert config.api.port == 8080
        assert config.scheduler.timezone == "America/New_York"

    def test_empty_yaml_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert Config.load(path).log_level == "INFO"

    def test_load_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Config.load(tmp_path / "absent.yaml")

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"log_level": "INFO", "log_json": True}))
        monkeypatch.setenv("BOTYARD_LOG_LEVEL", "ERROR")
        monkeypatch.setenv("BOTYARD_LOG_JSON", "false")
        monkeypatch.setenv("BOTYARD_DATA_DIR", str(tmp_path / "elsewhere"))

        config = Config.load(path)

        assert config.log_level == "ERROR"
        assert config.log_json is False
        assert config.data_dir == tmp_path / "elsewhere"

    def test_load_or_default_missing_path(self, tmp_path: Path) -> None:
        config = Config.load_or_default(tmp_path / "absent.yaml")
        assert config == Config()

    def test_load_or_default_finds_config_in_cwd(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / "config.yaml").write_text(yaml.dump({"log_level": "ERROR"}))
        monkeypatch.chdir(tmp_path)
        assert Config.load_or_default().log_level == "ERROR"
