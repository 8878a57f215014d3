"""
Source adapter protocol and probe DTO.

Contract:
    SourceAdapter.read() validates the whole container up front (raising
    ContainerError before any row is produced) and returns a lazy iterator
    of one dict per source record.
    SourceAdapter.probe() returns a quick snapshot: row count, columns, sample rows.

Architecture: charity_ingestion/adapters. Byte decoding only, no DB imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Protocol, runtime_checkable

from charity_ingestion.domain.types import SourceFile

SAMPLE_SIZE = 5


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for reading uploaded files into record dicts."""

    def read(self, source: SourceFile, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        """Validate the container, then yield one dict per source record."""
        ...

    def probe(self, source: SourceFile, options: dict[str, Any]) -> "SourceProbe":
        """Quick probe: row count, detected columns, sample rows."""
        ...


@dataclass(frozen=True)
class SourceProbe:
    """Result of probing a source file (row count, columns, first N rows)."""

    row_count: int
    columns: tuple[str, ...]
    sample_rows: tuple[dict[str, Any], ...]  # First 5 rows; do not mutate
    encoding: str | None = None
    detected_delimiter: str | None = None


def probe_rows(
    rows: Iterator[dict[str, Any]],
    columns: tuple[str, ...] = (),
    **extra: Any,
) -> SourceProbe:
    """Drain ``rows`` into a SourceProbe, keeping the first few as a sample."""
    sample: list[dict[str, Any]] = []
    count = 0
    seen = list(columns)
    for row in rows:
        count += 1
        if len(sample) < SAMPLE_SIZE:
            sample.append(row)
        for key in row:
            if key not in seen:
                seen.append(key)
    return SourceProbe(
        row_count=count,
        columns=tuple(seen),
        sample_rows=tuple(sample),
        **extra,
    )
