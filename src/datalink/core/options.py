"""Typed option values parsed from the loose mappings callers pass in.

Every operation accepts ``options`` as ``None``, a mapping (camelCase or
snake_case keys), or an already-built options model. Each option class picks
the keys it understands and ignores the rest, so one mapping can carry list,
write and transfer settings at the same time.
"""

import json
from typing import Any, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError, validator
from pydantic.alias_generators import to_camel

from .errors import FilterExpressionError, OptionsError

T = TypeVar("T", bound="OperationOptions")

OptionsInput = Union[None, Mapping[str, Any], BaseModel]


def _split_list(value: Any) -> List[str]:
    """Accept a JSON array, a comma separated string or a sequence of names."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid list value: {e}")
        else:
            value = text.split(",")
    return [str(item).strip() for item in value if str(item).strip()]


class OperationOptions(BaseModel):
    """Base class for immutable per-operation options."""

    class Config:
        frozen = True
        extra = "ignore"
        populate_by_name = True
        alias_generator = to_camel

    @classmethod
    def from_options(cls: Type[T], options: OptionsInput = None) -> T:
        """Build this option type from whatever the caller supplied."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if isinstance(options, BaseModel):
            options = options.model_dump(by_alias=False)

        try:
            return cls.model_validate(dict(options))
        except ValidationError as e:
            errors = e.errors()
            clause = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
            message = f"Invalid {cls.__name__} value: {e}"
            if issubclass(cls, QueryOptions):
                raise FilterExpressionError(message, clause=clause)
            raise OptionsError(message, option=clause)


class QueryOptions(OperationOptions):
    """Projection, filtering, sorting and paging for list-like requests."""

    fields: List[str] = []
    filter: Optional[str] = None
    sort: Optional[str] = None
    case_sensitive: bool = False
    recurse: bool = False
    full: bool = False
    include_metadata: bool = False
    limit: Optional[str] = None
    paging: Optional[str] = None

    @validator("fields", pre=True)
    def parse_fields(cls, v):
        return _split_list(v)

    @validator("limit", "paging", pre=True)
    def stringify(cls, v):
        if v is None:
            return v
        return str(v)


class CreateOptions(OperationOptions):
    """``overwrite`` left unset keeps create idempotent."""

    overwrite: Optional[bool] = None
    headers: List[str] = []

    @validator("headers", pre=True)
    def parse_headers(cls, v):
        return _split_list(v)


class WriteOptions(OperationOptions):
    overwrite: bool = False


class DeleteOptions(OperationOptions):
    purge: bool = False


class CompressOptions(OperationOptions):
    separate_per_row: bool = False


class TransferOptions(OperationOptions):
    overwrite: bool = False
    separate_per_row: bool = False

