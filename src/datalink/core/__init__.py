"""Backend-independent core: paths, entities, filtering and transfer."""

from . import paths
from .cancellation import CancellationToken
from .entities import (
    FILE_COLUMNS,
    CompressEntry,
    EntityKind,
    ReadResult,
    RowOutcome,
    StorageEntity,
    StorageUsage,
    TransferPackage,
    TransferRow,
    TransmitResult,
)
from .errors import (
    AlreadyExistsError,
    BackendUnavailableError,
    ConfigurationError,
    ConnectorNotFoundError,
    DatalinkError,
    FilterExpressionError,
    NotSupportedError,
    OperationCancelledError,
    OptionsError,
    PathError,
    SpecificationError,
    TransferRowError,
)
from .filters import FilterEngine
from .options import (
    CompressOptions,
    CreateOptions,
    DeleteOptions,
    QueryOptions,
    TransferOptions,
    WriteOptions,
)
from .transfer import TransferCoordinator, TransferResult

__all__ = [
    "paths",
    "CancellationToken",
    "FILE_COLUMNS",
    "CompressEntry",
    "EntityKind",
    "ReadResult",
    "RowOutcome",
    "StorageEntity",
    "StorageUsage",
    "TransferPackage",
    "TransferRow",
    "TransmitResult",
    "AlreadyExistsError",
    "BackendUnavailableError",
    "ConfigurationError",
    "ConnectorNotFoundError",
    "DatalinkError",
    "FilterExpressionError",
    "NotSupportedError",
    "OperationCancelledError",
    "OptionsError",
    "PathError",
    "SpecificationError",
    "TransferRowError",
    "FilterEngine",
    "CompressOptions",
    "CreateOptions",
    "DeleteOptions",
    "QueryOptions",
    "TransferOptions",
    "WriteOptions",
    "TransferCoordinator",
    "TransferResult",
]
