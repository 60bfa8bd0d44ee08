"""JSON document connector: each JSON file under the root is one table of records."""

import json
from typing import Any, Dict, List, Tuple

from ..core.errors import BackendUnavailableError
from .stream import StreamSpecifications, StreamTableConnector


class JsonSpecifications(StreamSpecifications):
    indented: bool = False


def flatten(record: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested objects into dotted keys."""
    flat: Dict[str, Any] = {}
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def unflatten(record: Dict[str, Any]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for key, value in record.items():
        current = nested
        segments = key.split(".")
        for segment in segments[:-1]:
            child = current.get(segment)
            if not isinstance(child, dict):
                child = current[segment] = {}
            current = child
        current[segments[-1]] = value
    return nested


class JsonConnector(StreamTableConnector):
    """Records of JSON files holding an array of objects (or a single object)."""

    type_id = "json"
    description = "JSON record files"
    Specifications = JsonSpecifications
    content_type = "application/json"
    extension = ".json"
    fixed_schema = False

    def parse(self, content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
        if not content.strip():
            return [], []
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackendUnavailableError(f"Failed to parse JSON content: {e}")

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise BackendUnavailableError("JSON content must be an object or an array of objects")

        rows = [flatten(item) for item in data]
        columns: List[str] = []
        for row in rows:
            columns.extend(key for key in row if key not in columns)
        return columns, rows

    def render(self, columns: List[str], rows: List[Dict[str, Any]]) -> bytes:
        records = [unflatten({column: row.get(column) for column in columns if column in row}) for row in rows]
        indent = 2 if self.specifications.indented else None
        return json.dumps(records, indent=indent, ensure_ascii=False, default=str).encode("utf-8")

    def normalize_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return flatten(record)
