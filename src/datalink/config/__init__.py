"""Configuration package for datalink."""

from .settings import (
    LoggingSettings,
    TransferSettings,
    GoogleDriveSettings,
    AppSettings,
    get_settings
)

from .schema import (
    ConnectorConfig,
    DatalinkConfig
)

__all__ = [
    "LoggingSettings",
    "TransferSettings",
    "GoogleDriveSettings",
    "AppSettings",
    "get_settings",
    "ConnectorConfig",
    "DatalinkConfig",
]
