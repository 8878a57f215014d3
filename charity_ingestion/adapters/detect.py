"""Format sniffing: file extension first, then content."""

from __future__ import annotations

import io
import zipfile

from charity_kernel.exceptions import UnsupportedFormatError

from charity_ingestion.domain.types import SourceFile, SourceFormat

_BY_SUFFIX = {
    ".xlsx": SourceFormat.XLSX,
    ".xlsm": SourceFormat.XLSX,
    ".zip": SourceFormat.CSV_ZIP,
    ".csv": SourceFormat.CSV,
    ".txt": SourceFormat.CSV,
    ".json": SourceFormat.JSON,
}


def detect_format(source: SourceFile) -> SourceFormat:
    """
    Guess the container format of an uploaded file.

    Raises:
        UnsupportedFormatError: neither the name nor the bytes are recognized.
    """
    by_suffix = _BY_SUFFIX.get(source.suffix)
    if by_suffix is not None:
        return by_suffix

    head = source.content[:4]
    if head.startswith(b"PK"):
        try:
            with zipfile.ZipFile(io.BytesIO(source.content)) as archive:
                names = set(archive.namelist())
        except zipfile.BadZipFile:
            raise UnsupportedFormatError("unknown", source.name) from None
        return SourceFormat.XLSX if "xl/workbook.xml" in names else SourceFormat.CSV_ZIP

    stripped = source.content.lstrip(b"\xef\xbb\xbf \t\r\n")
    if stripped[:1] in (b"{", b"["):
        return SourceFormat.JSON

    raise UnsupportedFormatError("unknown", source.name)
