"""Process-wide settings read from ``DATALINK_*`` environment variables."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingSettings(BaseSettings):
    """Defaults used by ``setup_logging`` when called without arguments."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file_path: Optional[str] = Field(default=None)

    class Config:
        env_prefix = "DATALINK_LOG_"


class TransferSettings(BaseSettings):
    """Bounds the number of root containers listed at once."""

    max_concurrent_listings: int = Field(default=8, ge=1)

    class Config:
        env_prefix = "DATALINK_TRANSFER_"


class GoogleDriveSettings(BaseSettings):
    page_size: int = Field(default=1000, ge=1, le=1000)

    class Config:
        env_prefix = "DATALINK_GOOGLE_"


class AppSettings(BaseSettings):
    """Top-level settings, grouping the per-concern sections."""

    name: str = Field(default="Datalink")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    config_path: Optional[str] = Field(default=None)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)
    google_drive: GoogleDriveSettings = Field(default_factory=GoogleDriveSettings)

    class Config:
        env_prefix = "DATALINK_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Return the shared settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings
