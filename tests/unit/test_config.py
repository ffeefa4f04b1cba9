"""Unit tests for config module."""

import pytest

from azmachine.config import ConfigError, ConfigManager, DriverConfig


class TestDriverConfig:
    """Tests for DriverConfig dataclass."""

    def test_default_values(self):
        config = DriverConfig()
        assert config.poll_interval_seconds == 5.0
        assert config.operation_timeout_seconds == 1800.0
        assert config.accept_marketplace_terms is False
        assert config.max_parallel_deletions == 8
        assert config.log_level == "INFO"

    def test_log_level_normalized(self):
        assert DriverConfig(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"poll_interval_seconds": 0},
            {"operation_timeout_seconds": -1},
            {"max_parallel_deletions": 0},
            {"log_level": "CHATTY"},
            {"log_level": 5},
            {"accept_marketplace_terms": "false"},
            {"poll_interval_seconds": "5"},
            {"max_parallel_deletions": 2.5},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            DriverConfig(**kwargs)

    def test_round_trip_dict(self):
        config = DriverConfig(accept_marketplace_terms=True)
        assert DriverConfig.from_dict(config.to_dict()) == config

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError, match="default_region"):
            DriverConfig.from_dict({"default_region": "westus2"})


class TestConfigManager:
    """Tests for loading configuration."""

    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", tmp_path / "missing.toml")
        assert ConfigManager.load_config(environ={}) == DriverConfig()

    def test_driver_table(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[driver]\npoll_interval_seconds = 2.5\nlog_level = "warning"\n')

        config = ConfigManager.load_config(path, environ={})
        assert config.poll_interval_seconds == 2.5
        assert config.log_level == "WARNING"

    def test_top_level_keys(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("max_parallel_deletions = 3\n")
        assert ConfigManager.load_config(path, environ={}).max_parallel_deletions == 3

    def test_default_file_loaded(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text("accept_marketplace_terms = true\n")
        monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", path)
        assert ConfigManager.load_config(environ={}).accept_marketplace_terms is True

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("max_parallel_deletions = 3\n")
        environ = {
            "AZMACHINE_MAX_PARALLEL_DELETIONS": "5",
            "AZMACHINE_ACCEPT_MARKETPLACE_TERMS": "yes",
            "AZMACHINE_OPERATION_TIMEOUT_SECONDS": "60",
        }
        config = ConfigManager.load_config(path, environ=environ)
        assert config.max_parallel_deletions == 5
        assert config.accept_marketplace_terms is True
        assert config.operation_timeout_seconds == 60.0

    def test_invalid_env_value(self):
        with pytest.raises(ConfigError, match="AZMACHINE_MAX_PARALLEL_DELETIONS"):
            ConfigManager.env_overrides({"AZMACHINE_MAX_PARALLEL_DELETIONS": "many"})

    def test_invalid_env_bool(self):
        with pytest.raises(ConfigError, match="must be a boolean"):
            ConfigManager.env_overrides({"AZMACHINE_ACCEPT_MARKETPLACE_TERMS": "maybe"})

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            ConfigManager.load_config(tmp_path / "nope.toml", environ={})

    def test_wrong_type_in_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("log_level = 5\n")
        with pytest.raises(ConfigError, match="log_level must be a string"):
            ConfigManager.load_config(path, environ={})

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("this is = = not toml\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            ConfigManager.load_config(path, environ={})
