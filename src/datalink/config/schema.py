"""Configuration schema for named connector instances."""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, validator


class ConnectorConfig(BaseModel):
    """Configuration for one named connector instance."""
    
    name: str = Field(..., description="Unique name callers use to address the connector")
    type: str = Field(..., description="Registered connector type, e.g. 'memory' or 'csv'")
    specifications: Dict[str, Any] = Field(default_factory=dict, description="Connector-specific settings")
    description: Optional[str] = Field(None, description="Optional description")
    
    @validator('name')
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Connector name must not be empty")
        if "/" in v or "\\" in v:
            raise ValueError("Connector name must not contain path separators")
        return v.strip()
    
    @validator('type')
    def validate_type(cls, v):
        if not v or not v.strip():
            raise ValueError("Connector type must not be empty")
        return v.strip().lower()


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "console")
ENVIRONMENTS = ("development", "staging", "production")


def _one_of(value: str, allowed, label: str) -> str:
    if value not in allowed:
        raise ValueError(f"{label} '{value}' is not one of {', '.join(allowed)}")
    return value


class DatalinkConfig(BaseModel):
    """Root configuration: the connector instances available to a process."""

    version: str = Field(default="1.0.0")
    environment: str = Field(default="development", description="One of development, staging or production")
    connectors: List[ConnectorConfig] = Field(default_factory=list, description="Configured connectors")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    @validator('log_level')
    def check_log_level(cls, v):
        return _one_of(v.upper(), LOG_LEVELS, "Log level")

    @validator('log_format')
    def check_log_format(cls, v):
        return _one_of(v.lower(), LOG_FORMATS, "Log format")

    @validator('environment')
    def check_environment(cls, v):
        return _one_of(v.lower(), ENVIRONMENTS, "Environment")

    @validator('connectors')
    def validate_unique_names(cls, v):
        names = [connector.name for connector in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate connector names: {duplicates}")
        return v
    
    def get_connector(self, name: str) -> Optional[ConnectorConfig]:
        """Get a connector configuration by name."""
        for connector in self.connectors:
            if connector.name == name:
                return connector
        return None
    
    def get_connectors_by_type(self, connector_type: str) -> List[ConnectorConfig]:
        """Get all connector configurations of a type."""
        return [c for c in self.connectors if c.type == connector_type.lower()]
