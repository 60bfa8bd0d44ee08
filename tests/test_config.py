"""Tests for configuration loading, settings and logging setup."""

import json
import logging

import pytest
import yaml

from datalink.config.loader import ConfigLoader
from datalink.config.settings import TransferSettings
from datalink.core.errors import ConfigurationError
from datalink.service import StorageService
from datalink.utils.logging import HANDLER_NAME, setup_logging


def sample_config(tmp_path):
    return {
        "environment": "staging",
        "log_level": "info",
        "connectors": [
            {"name": "scratch", "type": "Memory"},
            {"name": "sheets", "type": "csv", "specifications": {"root": str(tmp_path), "delimiter": ";"}},
        ],
    }


class TestConfigLoader:
    """Test loading connector configuration files."""

    def setup_method(self):
        self.loader = ConfigLoader()

    def test_load_yaml(self, tmp_path):
        config_file = tmp_path / "datalink.yaml"
        config_file.write_text(yaml.safe_dump(sample_config(tmp_path)))

        config = self.loader.load_from_file(config_file)

        assert config.environment == "staging"
        assert config.log_level == "INFO"
        assert [connector.type for connector in config.connectors] == ["memory", "csv"]
        assert config.get_connector("sheets").specifications["delimiter"] == ";"
        assert config.get_connector("missing") is None

    def test_load_json(self, tmp_path):
        config_file = tmp_path / "datalink.json"
        config_file.write_text(json.dumps(sample_config(tmp_path)))

        config = self.loader.load_from_file(config_file)
        assert [c.name for c in config.get_connectors_by_type("CSV")] == ["sheets"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(tmp_path / "absent.yaml")

    def test_unsupported_format(self, tmp_path):
        config_file = tmp_path / "datalink.toml"
        config_file.write_text("connectors = []")

        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(config_file)

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "datalink.yaml"
        config_file.write_text("connectors: [unclosed")

        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(config_file)

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationError) as exc_info:
            self.loader.load_from_dict({"connectors": [
                {"name": "a", "type": "memory"},
                {"name": "a", "type": "local"},
            ]})
        assert "Duplicate" in str(exc_info.value)

    def test_name_without_separators(self):
        with pytest.raises(ConfigurationError):
            self.loader.load_from_dict({"connectors": [{"name": "a/b", "type": "memory"}]})

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATALINK_LOG_LEVEL", "debug")
        monkeypatch.setenv("DATALINK_ENVIRONMENT", "production")

        config = self.loader.load_from_dict({"log_level": "INFO"})

        assert config.log_level == "DEBUG"
        assert config.environment == "production"

    @pytest.mark.asyncio
    async def test_service_from_file(self, tmp_path):
        config_file = tmp_path / "datalink.yaml"
        config_file.write_text(yaml.safe_dump(sample_config(tmp_path)))

        service = StorageService.from_file(config_file)
        await service.write("sheets", "people.csv", {"name": "Ann"})

        assert (tmp_path / "people.csv").read_text() == "name\nAnn\n"


class TestSettings:
    """Test environment driven settings."""

    def test_transfer_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("DATALINK_TRANSFER_MAX_CONCURRENT_LISTINGS", "2")

        assert TransferSettings().max_concurrent_listings == 2


class TestLoggingSetup:
    """Test logging configuration."""

    def teardown_method(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            if handler.get_name() == HANDLER_NAME:
                root.removeHandler(handler)
                handler.close()

    def test_setup_replaces_handlers(self, tmp_path):
        setup_logging("DEBUG", "console")
        setup_logging("INFO", "json", str(tmp_path / "logs" / "datalink.log"))

        names = [handler.get_name() for handler in logging.getLogger().handlers]
        assert names.count(HANDLER_NAME) == 2
        assert logging.getLogger().level == logging.INFO
        assert (tmp_path / "logs").is_dir()

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("LOUD")
