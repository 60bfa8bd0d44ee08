"""Delimited text connector: each CSV file under the root is one table."""

import io
from typing import Any, Dict, List, Tuple

import pandas as pd
from pydantic import validator

from ..core.errors import BackendUnavailableError
from .stream import StreamSpecifications, StreamTableConnector


class CsvSpecifications(StreamSpecifications):
    delimiter: str = ","

    @validator("delimiter")
    def validate_delimiter(cls, v):
        if len(v) != 1:
            raise ValueError("Delimiter must be a single character")
        return v


class CsvConnector(StreamTableConnector):
    """Rows of delimited text files, parsed and rendered with pandas.

    Values are kept as text; an empty cell reads back as an empty string.
    """

    type_id = "csv"
    description = "Delimited text files"
    Specifications = CsvSpecifications
    content_type = "text/csv"
    extension = ".csv"

    def parse(self, content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
        if not content.strip():
            return [], []
        try:
            frame = pd.read_csv(
                io.BytesIO(content),
                sep=self.specifications.delimiter,
                dtype=str,
                keep_default_na=False,
            )
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise BackendUnavailableError(f"Failed to parse CSV content: {e}")
        columns = [str(column) for column in frame.columns]
        return columns, frame.to_dict(orient="records")

    def render(self, columns: List[str], rows: List[Dict[str, Any]]) -> bytes:
        if not columns:
            return b""
        frame = pd.DataFrame(rows, columns=columns)
        return frame.to_csv(index=False, sep=self.specifications.delimiter).encode("utf-8")
