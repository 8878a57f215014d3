"""
Archive-of-delimited-text source adapter (bank statement exports).

Every member whose name ends with a configured text extension is decoded and
parsed with header-based DictReader; rows of all members are concatenated in
member-name order. Each row carries its member name under ``_source_file``.

The archive is opened and every member decoded before the first row is
yielded, so a corrupt archive fails the import up front.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any, Iterator

from charity_kernel.exceptions import ContainerError

from charity_ingestion.adapters.base import SourceProbe, probe_rows
from charity_ingestion.adapters.csv_adapter import (
    decode_text,
    iter_delimited,
    open_delimited,
)
from charity_ingestion.domain.types import SourceFile

SOURCE_FILE_KEY = "_source_file"
DEFAULT_TEXT_EXTENSIONS = (".csv", ".txt")


def _text_members(archive: zipfile.ZipFile, extensions: tuple[str, ...]) -> list[str]:
    names = []
    for info in archive.infolist():
        name = info.filename
        if info.is_dir() or name.startswith("__MACOSX/"):
            continue
        if name.lower().endswith(extensions):
            names.append(name)
    return sorted(names)


def _load_members(source: SourceFile, options: dict[str, Any]) -> list[tuple[str, str]]:
    extensions = tuple(e.lower() for e in options.get("text_extensions", DEFAULT_TEXT_EXTENSIONS))
    try:
        with zipfile.ZipFile(io.BytesIO(source.content)) as archive:
            names = _text_members(archive, extensions)
            raw = [(name, archive.read(name)) for name in names]
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as exc:
        raise ContainerError(source.name, f"not a readable zip archive: {exc}") from exc
    if not raw:
        raise ContainerError(
            source.name, f"archive contains no {'/'.join(extensions)} files"
        )
    return [(name, decode_text(data, f"{source.name}:{name}", options)) for name, data in raw]


class ZipCsvSourceAdapter:
    """Read a zip of CSV exports as one concatenated row stream."""

    def read(self, source: SourceFile, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        members = _load_members(source, options)
        readers = [
            (name, open_delimited(text, f"{source.name}:{name}", options)[0])
            for name, text in members
        ]
        return self._rows(source.name, readers)

    @staticmethod
    def _rows(archive_name: str, readers: list) -> Iterator[dict[str, Any]]:
        for name, reader in readers:
            yield from iter_delimited(
                reader, f"{archive_name}:{name}", extra={SOURCE_FILE_KEY: name}
            )

    def probe(self, source: SourceFile, options: dict[str, Any]) -> SourceProbe:
        rows = self.read(source, options)
        return probe_rows(rows, encoding=options.get("encoding", "utf-8"))
