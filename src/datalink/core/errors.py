"""Error taxonomy shared by the core and every connector."""

from typing import Optional


class DatalinkError(Exception):
    """Base class for every error raised by datalink."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (path: {self.path})"
        return self.message


class PathError(DatalinkError):
    """Raised when a path is empty, of the wrong kind, or does not exist."""


class SpecificationError(DatalinkError):
    """Raised when connector specifications are missing or invalid."""


class FilterExpressionError(DatalinkError):
    """Raised when a filter, sort, paging or field expression cannot be parsed."""

    def __init__(self, message: str, clause: Optional[str] = None):
        super().__init__(message)
        self.clause = clause

    def __str__(self) -> str:
        if self.clause is not None:
            return f"{self.message} (clause: {self.clause!r})"
        return self.message


class OptionsError(DatalinkError):
    """Raised when a write, create, delete or transfer option has an invalid value."""

    def __init__(self, message: str, option: Optional[str] = None):
        super().__init__(message)
        self.option = option


class AlreadyExistsError(DatalinkError):
    """Raised when a write or create target exists and overwrite is disallowed."""


class NotSupportedError(DatalinkError):
    """Raised when a connector does not implement an operation."""


class TransferRowError(DatalinkError):
    """A single transfer row failed during prepare or transmit."""

    def __init__(self, message: str, key: str, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.key = key

    def __str__(self) -> str:
        return f"{self.message} (row: {self.key})"


class BackendUnavailableError(DatalinkError):
    """Raised when the underlying service, database or file system call fails."""


class ConnectorNotFoundError(DatalinkError):
    """Raised when a connector type or configured connector name is unknown."""


class ConfigurationError(DatalinkError):
    """Raised when configuration loading fails."""


class OperationCancelledError(DatalinkError):
    """Raised when a cancellation signal stops a single-entity or listing operation."""
