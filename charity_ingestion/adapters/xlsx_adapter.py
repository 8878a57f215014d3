"""
XLSX source adapter for bank-statement and PayPal spreadsheets.

Reads the first sheet (or ``sheet`` from options: 0-based index or name).
The first row is the header; every later non-blank row is one record. Cell
values keep their native types: numbers stay numbers so date serials
survive, date cells arrive as ``datetime``. Strings are stripped.
"""

from __future__ import annotations

import io
import re
import zipfile
from typing import Any, Iterator

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from charity_kernel.exceptions import ContainerError

from charity_ingestion.adapters.base import SourceProbe, probe_rows
from charity_ingestion.domain.types import SourceFile


def _normalize_header_cell(value: Any) -> str:
    """Normalize a header cell for key use."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _cell_value(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _headers(header_row: tuple[Any, ...]) -> list[str]:
    headers: list[str] = []
    for c, v in enumerate(header_row):
        key = _normalize_header_cell(v) or f"Column_{c + 1}"
        # Dedupe duplicate headers
        base = key
        cnt = 0
        while key in headers:
            cnt += 1
            key = f"{base}_{cnt}"
        headers.append(key)
    while headers and headers[-1].startswith("Column_"):
        headers.pop()
    return headers


class XlsxSourceAdapter:
    """Read .xlsx workbooks as one dict per row."""

    def _open(self, source: SourceFile, options: dict[str, Any]):
        try:
            wb = openpyxl.load_workbook(io.BytesIO(source.content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise ContainerError(source.name, f"not a readable workbook: {exc}") from exc
        sheet_ref = options.get("sheet", 0)
        try:
            sheet = wb.worksheets[sheet_ref] if isinstance(sheet_ref, int) else wb[sheet_ref]
        except (IndexError, KeyError) as exc:
            wb.close()
            raise ContainerError(source.name, f"no sheet {sheet_ref!r}") from exc
        return wb, sheet

    def read(self, source: SourceFile, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        wb, sheet = self._open(source, options)
        try:
            rows = sheet.iter_rows(values_only=True)
            header_row = next(rows, None)
        except (KeyError, ValueError, SyntaxError, zipfile.BadZipFile) as exc:
            wb.close()
            raise ContainerError(source.name, f"unreadable sheet: {exc}") from exc
        if header_row is None:
            wb.close()
            return iter(())
        return self._rows(wb, rows, _headers(header_row))

    @staticmethod
    def _rows(wb: Any, rows: Iterator[tuple[Any, ...]], headers: list[str]) -> Iterator[dict[str, Any]]:
        ncols = len(headers)
        try:
            for row in rows:
                vals = [_cell_value(v) for v in row[:ncols]]
                if not any(v is not None for v in vals):
                    continue
                vals.extend([None] * (ncols - len(vals)))
                yield dict(zip(headers, vals))
        finally:
            wb.close()

    def probe(self, source: SourceFile, options: dict[str, Any]) -> SourceProbe:
        wb, sheet = self._open(source, options)
        try:
            rows = sheet.iter_rows(values_only=True)
            header_row = next(rows, None)
            if header_row is None:
                return SourceProbe(row_count=0, columns=(), sample_rows=())
            headers = _headers(header_row)
            ncols = len(headers)
            data = (
                dict(zip(headers, [_cell_value(v) for v in row[:ncols]]))
                for row in rows
                if any(_cell_value(v) is not None for v in row[:ncols])
            )
            return probe_rows(data, columns=tuple(headers))
        finally:
            wb.close()
