"""Loading of connector configuration from YAML/JSON files, dicts and the environment."""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

import yaml

from .schema import DatalinkConfig
from ..core.errors import ConfigurationError
from ..utils.logging import get_logger

# Environment variables that override top-level configuration keys.
ENV_OVERRIDES = {
    "DATALINK_LOG_LEVEL": "log_level",
    "DATALINK_LOG_FORMAT": "log_format",
    "DATALINK_ENVIRONMENT": "environment",
}

DEFAULT_SEARCH_PATHS = (
    "config/datalink.yaml",
    "config/datalink.yml",
    "config/datalink.json",
    "datalink.yaml",
    "datalink.yml",
    "datalink.json",
)


def _parse_yaml(handle) -> Any:
    return yaml.safe_load(handle) or {}


def _parse_json(handle) -> Any:
    return json.load(handle)


PARSERS: Dict[str, Callable[[Any], Any]] = {
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".json": _parse_json,
}


class ConfigLoader:
    """Builds a validated :class:`DatalinkConfig` from files or plain data."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        """Initialize the loader.

        Args:
            environ: Environment to read overrides from, ``os.environ`` by default
        """
        self.environ = os.environ if environ is None else environ
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> DatalinkConfig:
        """Load configuration from a YAML or JSON file.

        Raises:
            ConfigurationError: If the file is missing, unreadable, malformed or invalid
        """
        file_path = Path(file_path)
        parser = PARSERS.get(file_path.suffix.lower())
        if parser is None:
            raise ConfigurationError(f"Unsupported configuration format: {file_path.suffix or '(none)'}",
                                     path=str(file_path))
        if not file_path.is_file():
            raise ConfigurationError("Configuration file not found", path=str(file_path))

        try:
            with file_path.open("r", encoding="utf-8") as handle:
                data = parser(handle)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Malformed configuration file: {e}", path=str(file_path))
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {e}", path=str(file_path))

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping", path=str(file_path))

        self.logger.info("Read configuration file", file_path=str(file_path))
        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> DatalinkConfig:
        """Validate configuration data after applying environment overrides.

        Raises:
            ConfigurationError: If validation fails
        """
        merged = {**data, **self.environment_overrides()}
        try:
            config = DatalinkConfig(**merged)
        except Exception as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            connectors=[connector.name for connector in config.connectors],
            environment=config.environment
        )
        return config

    def environment_overrides(self) -> Dict[str, str]:
        overrides = {
            key: self.environ[variable]
            for variable, key in ENV_OVERRIDES.items()
            if self.environ.get(variable)
        }
        if overrides:
            self.logger.debug("Using environment overrides", keys=sorted(overrides))
        return overrides

    def find_config_file(self, search_paths: Iterable[Union[str, Path]] = DEFAULT_SEARCH_PATHS) -> Optional[Path]:
        """Return ``DATALINK_CONFIG_PATH`` when set, else the first existing search path."""
        explicit = self.environ.get("DATALINK_CONFIG_PATH")
        if explicit:
            return Path(explicit)
        for candidate in search_paths:
            path = Path(candidate)
            if path.is_file():
                return path
        return None


def load_config_from_env(search_paths: Iterable[Union[str, Path]] = DEFAULT_SEARCH_PATHS) -> DatalinkConfig:
    """Load the configuration file named by the environment or found on the search path.

    An empty configuration is returned when no file exists.
    """
    loader = ConfigLoader()
    config_file = loader.find_config_file(search_paths)
    if config_file is None:
        loader.logger.info("No configuration file found, using empty configuration")
        return loader.load_from_dict({})
    return loader.load_from_file(config_file)
