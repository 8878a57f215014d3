"""
JSON source adapter for accounting-system act dumps.

The document is either a single object (one row) or an array of objects (one
row per element). Nested arrays such as ``items`` are kept as structured
sub-data. Any other shape is a container error.
"""

from __future__ import annotations

import json
from typing import Any, Iterator

from charity_kernel.exceptions import ContainerError

from charity_ingestion.adapters.base import SourceProbe, probe_rows
from charity_ingestion.adapters.csv_adapter import decode_text
from charity_ingestion.domain.types import SourceFile


def load_records(source: SourceFile, options: dict[str, Any]) -> list[dict[str, Any]]:
    """Parse and shape-check the whole document."""
    text = decode_text(source.content, source.name, options)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ContainerError(source.name, f"invalid JSON: {exc}") from exc

    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise ContainerError(
            source.name, f"top level must be an object or array, got {type(data).__name__}"
        )
    for i, element in enumerate(data):
        if not isinstance(element, dict):
            raise ContainerError(
                source.name, f"array element {i} is {type(element).__name__}, not an object"
            )
    return data


class JsonSourceAdapter:
    """Read a JSON object or array of objects as one dict per record."""

    def read(self, source: SourceFile, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        return iter(load_records(source, options))

    def probe(self, source: SourceFile, options: dict[str, Any]) -> SourceProbe:
        return probe_rows(iter(load_records(source, options)))
