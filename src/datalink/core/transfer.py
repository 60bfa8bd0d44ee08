"""Two-phase transfer protocol: prepare on the source, transmit on the destination.

Neither side knows the other's type. A source materializes a
:class:`TransferPackage` from its own listing; the destination applies the
rows in order. The helpers below are the file-oriented implementations of
both phases, written purely against the capability contract so any
hierarchical connector can reuse them.
"""

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from . import paths
from .cancellation import CancellationToken, is_cancelled
from .entities import RowOutcome, TransferPackage, TransferRow, TransmitResult
from .errors import OperationCancelledError, PathError, TransferRowError
from .filters import validate_query
from .options import OptionsInput, QueryOptions, TransferOptions
from ..utils.logging import get_logger, log_async_execution_time

if TYPE_CHECKING:
    from ..connectors.base import Connector, StorageConnector


logger = get_logger("transfer")


async def prepare_file_package(
    connector: "StorageConnector",
    path: str,
    options: OptionsInput = None,
    cancel: Optional[CancellationToken] = None
) -> TransferPackage:
    """Build a package from a file or directory subtree of a hierarchical connector.

    Row keys are relative to ``path``; a single file is keyed by its name.
    Rows follow the listing order, so a directory marker always precedes the
    rows nested beneath it.
    """
    path = paths.normalize(path)
    package = TransferPackage()

    if paths.is_file(path):
        if not await connector.exist(path, cancel=cancel):
            raise PathError("The specified path does not exist", path=path)
        targets = [(paths.name(path), path, None)]
    else:
        query = QueryOptions.from_options(options)
        entities = await connector.list_entities(path, query, cancel)
        targets = [
            (paths.relative_to(entity.full_path, path), entity.full_path, entity)
            for entity in entities
        ]

    for key, full_path, entity in targets:
        if is_cancelled(cancel):
            package.cancelled = True
            break

        if entity is not None and entity.is_directory:
            package.rows.append(TransferRow(key=key))
            continue

        try:
            read = await connector.read(full_path, cancel=cancel)
        except OperationCancelledError:
            package.cancelled = True
            break
        except Exception as e:
            error = TransferRowError(f"Failed to read entity: {e}", key=key, path=full_path)
            logger.warning("Skipping unreadable entity", path=full_path, error=str(e))
            package.skipped.append(RowOutcome(key=key, success=False, error=str(error)))
            continue

        content_type = read.content_type or (entity.content_type if entity is not None else None)
        package.rows.append(TransferRow(key=key, content=read.content, content_type=content_type))
        logger.debug("Prepared entity for transfer", path=full_path, size=read.size)

    return package


def _rows_to_apply(package: TransferPackage, transfer_options: TransferOptions) -> List[TransferRow]:
    """Pick the rows a file destination writes.

    A tabular package carries a consolidated document; unless one file per
    row was asked for, that document is written as a single file.
    """
    if package.is_tabular and not transfer_options.separate_per_row and package.content is not None:
        return [TransferRow(
            key=package.name or "data",
            content=package.content,
            content_type=package.content_type
        )]
    return list(package.rows)


async def transmit_file_package(
    connector: "Connector",
    path: str,
    options: OptionsInput,
    package: TransferPackage,
    cancel: Optional[CancellationToken] = None
) -> TransmitResult:
    """Apply a package to a hierarchical destination, one row at a time."""
    destination = paths.normalize(path)
    transfer_options = TransferOptions.from_options(options)
    package.check_unique_keys()
    rows = _rows_to_apply(package, transfer_options)
    result = TransmitResult()

    file_rows = [row for row in rows if not row.is_directory_marker]
    if paths.is_file(destination) and (len(file_rows) != 1 or len(rows) != 1):
        raise PathError(
            "The destination must be a directory when transferring more than one entity",
            path=destination
        )

    for row in rows:
        if is_cancelled(cancel):
            result.cancelled = True
            break

        if paths.is_file(destination):
            target = destination
        else:
            target = paths.combine(destination, row.key)

        try:
            if row.is_directory_marker:
                await connector.create(paths.as_directory(target), cancel=cancel)
            else:
                parent = paths.parent(target)
                if not paths.is_root(parent):
                    await connector.create(parent, cancel=cancel)
                await connector.write(
                    target,
                    {"overwrite": transfer_options.overwrite},
                    row.content,
                    cancel=cancel
                )
        except OperationCancelledError:
            result.cancelled = True
            break
        except Exception as e:
            error = TransferRowError(f"Failed to transmit row: {e}", key=row.key, path=target)
            logger.warning("Skipping row that failed to transmit", key=row.key, path=target, error=str(e))
            result.outcomes.append(RowOutcome(key=row.key, success=False, error=str(error)))
            continue

        result.outcomes.append(RowOutcome(key=row.key, success=True))
        logger.info("Transmitted row", key=row.key, path=target)

    return result


@dataclass
class TransferResult:
    """Outcome of one source-to-destination transfer."""

    source_path: str
    destination_path: str
    rows_prepared: int = 0
    skipped: List[RowOutcome] = field(default_factory=list)
    outcomes: List[RowOutcome] = field(default_factory=list)
    cancelled: bool = False
    duration: Optional[float] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failures(self) -> List[RowOutcome]:
        """Rows skipped during prepare followed by rows that failed to transmit."""
        return list(self.skipped) + [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourcePath": self.source_path,
            "destinationPath": self.destination_path,
            "rowsPrepared": self.rows_prepared,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "failures": [failure.to_dict() for failure in self.failures],
            "duration": self.duration,
        }


class TransferCoordinator:
    """Drives prepare on a source connector and transmit on a destination connector."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @log_async_execution_time
    async def transfer(
        self,
        source: "Connector",
        source_path: str,
        destination: "Connector",
        destination_path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> TransferResult:
        """Move a file, table or directory subtree from ``source`` to ``destination``.

        Validation errors are raised before either connector is called. Row
        failures are reported in the result; the batch is never aborted by a
        single row, and nothing is rolled back.
        """
        start_time = time.time()
        source_path = paths.normalize(source_path)
        destination_path = paths.normalize(destination_path)

        validate_query(QueryOptions.from_options(options))
        TransferOptions.from_options(options)

        result = TransferResult(source_path=source_path, destination_path=destination_path)

        self.logger.info(
            "Starting transfer",
            source=source.name,
            source_path=source_path,
            destination=destination.name,
            destination_path=destination_path
        )

        try:
            package = await source.prepare_transmission_data(source_path, options, cancel)
        except OperationCancelledError:
            package = TransferPackage(cancelled=True)
        result.rows_prepared = len(package.rows)
        result.skipped = list(package.skipped)

        if package.cancelled or is_cancelled(cancel):
            result.cancelled = True
            result.duration = time.time() - start_time
            self.logger.warning(
                "Transfer cancelled during prepare",
                source_path=source_path,
                rows_prepared=result.rows_prepared
            )
            return result

        transmitted = await destination.transmit_data(destination_path, options, package, cancel)
        result.outcomes = list(transmitted.outcomes)
        result.cancelled = transmitted.cancelled
        result.duration = time.time() - start_time

        self.logger.info(
            "Transfer completed",
            source_path=source_path,
            destination_path=destination_path,
            rows_prepared=result.rows_prepared,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled,
            duration=f"{result.duration:.2f}s"
        )

        return result
