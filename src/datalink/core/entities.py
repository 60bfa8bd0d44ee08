"""Backend-independent entity and transfer data structures."""

import base64
import hashlib
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from . import paths
from .errors import PathError
from .sizes import format_size

FILE_COLUMNS = ["path", "content", "contentType"]

MetadataValue = Union[str, bool]


class EntityKind(str, Enum):
    """Kinds of listable entities."""
    FILE = "file"
    DIRECTORY = "directory"


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def guess_content_type(path: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(paths.name(path))
    return content_type


def md5_hex(content: bytes) -> str:
    return hashlib.md5(content).hexdigest()


@dataclass
class StorageEntity:
    """One listable file or directory, independent of the backend that produced it."""

    full_path: str
    kind: EntityKind
    id: Optional[str] = None
    size: Optional[int] = None
    md5: Optional[str] = None
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None
    content_type: Optional[str] = None
    metadata: Dict[str, MetadataValue] = field(default_factory=dict)

    def __post_init__(self):
        self.kind = EntityKind(self.kind)
        canonical = paths.normalize(self.full_path)

        if self.kind == EntityKind.DIRECTORY:
            canonical = paths.as_directory(canonical)
            self.content_type = None
            if self.size is None:
                self.size = 0
        elif not canonical or canonical.endswith(paths.SEPARATOR):
            raise PathError("A file entity cannot have a directory path", path=self.full_path)

        self.full_path = canonical
        self.created_time = to_utc(self.created_time)
        self.modified_time = to_utc(self.modified_time)

        if self.id is None:
            self.id = hashlib.md5(canonical.encode("utf-8")).hexdigest()

    @property
    def name(self) -> str:
        return paths.name(self.full_path)

    @property
    def parent(self) -> str:
        return paths.parent(self.full_path)

    @property
    def is_file(self) -> bool:
        return self.kind == EntityKind.FILE

    @property
    def is_directory(self) -> bool:
        return self.kind == EntityKind.DIRECTORY

    def to_dict(self, full: bool = True) -> Dict[str, Any]:
        """Render the entity as a listing row.

        ``full`` keeps the exact byte size; otherwise the size is humanized.
        """
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "path": self.full_path,
            "createdTime": self.created_time.isoformat() if self.created_time else None,
            "modifiedTime": self.modified_time.isoformat() if self.modified_time else None,
            "size": format_size(self.size, humanize=not full),
            "contentType": self.content_type,
            "md5": self.md5,
            "metadata": dict(self.metadata),
        }


@dataclass
class ReadResult:
    """Content and metadata returned by a read."""

    content: bytes
    content_type: Optional[str] = None
    extension: Optional[str] = None
    md5: Optional[str] = None
    record: Optional[Dict[str, Any]] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class StorageUsage:
    """Backend usage summary; zero where the backend has no quota concept."""

    total: int = 0
    free: int = 0
    used: int = 0

    def to_dict(self, full: bool = True) -> Dict[str, Any]:
        return {
            "total": format_size(self.total, humanize=not full),
            "free": format_size(self.free, humanize=not full),
            "used": format_size(self.used, humanize=not full),
        }


@dataclass
class CompressEntry:
    """One entry of an archive produced by compress."""

    name: str
    content: bytes
    content_type: Optional[str] = None


@dataclass
class TransferRow:
    """One unit of a transfer package.

    ``content`` is ``None`` for directory markers. ``items`` holds positional
    values matching the package columns for tabular sources.
    """

    key: str
    content: Optional[bytes] = None
    content_type: Optional[str] = None
    items: Optional[List[Any]] = None

    @property
    def is_directory_marker(self) -> bool:
        return self.content is None and self.items is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "content": base64.b64encode(self.content).decode("ascii") if self.content is not None else None,
            "contentType": self.content_type,
            "items": list(self.items) if self.items is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferRow":
        content = data.get("content")
        return cls(
            key=data["key"],
            content=base64.b64decode(content) if content is not None else None,
            content_type=data.get("contentType"),
            items=data.get("items"),
        )


@dataclass
class RowOutcome:
    """Result of processing one transfer row."""

    key: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "success": self.success, "error": self.error}


@dataclass
class TransferPackage:
    """Schema plus rows built by a source during prepare.

    ``name``/``content``/``content_type`` carry a consolidated rendering of a
    tabular source (the whole filtered table as one document); file sources
    leave them unset. ``skipped`` lists rows the source could not read and
    ``cancelled`` marks a package cut short by cancellation.
    """

    columns: List[str] = field(default_factory=lambda: list(FILE_COLUMNS))
    rows: List[TransferRow] = field(default_factory=list)
    name: Optional[str] = None
    content: Optional[bytes] = None
    content_type: Optional[str] = None
    skipped: List[RowOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def is_tabular(self) -> bool:
        return self.columns != FILE_COLUMNS

    def keys(self) -> List[str]:
        return [row.key for row in self.rows]

    def check_unique_keys(self) -> None:
        """Raise PathError naming the first key carried by more than one row."""
        seen = set()
        for key in self.keys():
            if key in seen:
                raise PathError(f"Duplicate row key in transfer package: {key}", path=key)
            seen.add(key)

    def records(self) -> List[Dict[str, Any]]:
        """Return every non-marker row as a column-name mapping."""
        result = []
        for row in self.rows:
            if row.items is not None:
                result.append(dict(zip(self.columns, row.items)))
            elif row.content is not None:
                result.append({
                    "path": row.key,
                    "content": base64.b64encode(row.content).decode("ascii"),
                    "contentType": row.content_type,
                })
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [row.to_dict() for row in self.rows],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferPackage":
        package = cls(
            columns=list(data.get("columns") or FILE_COLUMNS),
            rows=[TransferRow.from_dict(row) for row in data.get("rows", [])],
        )
        package.check_unique_keys()
        return package


@dataclass
class TransmitResult:
    """Per-row outcomes of a transmit on a destination."""

    outcomes: List[RowOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    @property
    def failures(self) -> List[RowOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]
