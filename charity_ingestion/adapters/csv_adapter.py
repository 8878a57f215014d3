"""
Delimited-text source adapter.

Uses csv.DictReader over the decoded file. The delimiter is sniffed among
comma, semicolon and tab unless ``delimiter`` is given in the options. A UTF-8
BOM is stripped. Header labels are whitespace-trimmed; cells stay text.
"""

from __future__ import annotations

import csv
import io
from typing import Any, Iterator

from charity_kernel.exceptions import ContainerError

from charity_ingestion.adapters.base import SourceProbe, probe_rows
from charity_ingestion.domain.types import SourceFile

_SNIFF_DELIMITERS = ",;\t"
_SNIFF_BYTES = 8192
EXTRA_FIELDS_KEY = "_extra"


def _get_encoding(options: dict[str, Any]) -> str:
    enc = options.get("encoding", "utf-8")
    if enc.lower() in ("utf-8", "utf8"):
        return "utf-8-sig"  # Strip BOM if present
    return enc


def decode_text(content: bytes, filename: str, options: dict[str, Any]) -> str:
    """Decode file bytes, turning codec failures into ContainerError."""
    encoding = _get_encoding(options)
    try:
        return content.decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise ContainerError(filename, f"cannot decode as {encoding}: {exc}") from exc


def sniff_delimiter(text: str, options: dict[str, Any]) -> str:
    if options.get("delimiter"):
        return options["delimiter"]
    sample = text[:_SNIFF_BYTES]
    try:
        return csv.Sniffer().sniff(sample, delimiters=_SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return ","


def open_delimited(
    text: str,
    filename: str,
    options: dict[str, Any],
) -> tuple[csv.DictReader, str]:
    """
    Build a DictReader with the header already consumed.

    Reading the header here, not lazily, surfaces a broken file before any
    row is processed.
    """
    delimiter = sniff_delimiter(text, options)
    reader = csv.DictReader(
        io.StringIO(text, newline=""),
        delimiter=delimiter,
        restkey=EXTRA_FIELDS_KEY,
    )
    try:
        fieldnames = reader.fieldnames
    except csv.Error as exc:
        raise ContainerError(filename, f"malformed header: {exc}") from exc
    if fieldnames is not None:
        reader.fieldnames = [name.strip() for name in fieldnames]
    return reader, delimiter


def iter_delimited(
    reader: csv.DictReader,
    filename: str,
    extra: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """Yield non-blank rows; ``extra`` keys are merged into every row."""
    try:
        for row in reader:
            if not any(v not in (None, "") for k, v in row.items() if k != EXTRA_FIELDS_KEY):
                continue
            if extra:
                row.update(extra)
            yield row
    except csv.Error as exc:
        raise ContainerError(filename, f"line {reader.line_num}: {exc}") from exc


class CsvSourceAdapter:
    """Read one delimited text file as one dict per row."""

    def read(self, source: SourceFile, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        text = decode_text(source.content, source.name, options)
        reader, _ = open_delimited(text, source.name, options)
        return iter_delimited(reader, source.name)

    def probe(self, source: SourceFile, options: dict[str, Any]) -> SourceProbe:
        text = decode_text(source.content, source.name, options)
        reader, delimiter = open_delimited(text, source.name, options)
        return probe_rows(
            iter_delimited(reader, source.name),
            columns=tuple(reader.fieldnames or ()),
            encoding=_get_encoding(options),
            detected_delimiter=delimiter,
        )
