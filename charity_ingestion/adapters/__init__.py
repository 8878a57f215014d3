"""Source adapters: uploaded bytes -> raw row dicts (no DB)."""

from charity_ingestion.adapters.base import SourceAdapter, SourceProbe
from charity_ingestion.adapters.csv_adapter import CsvSourceAdapter
from charity_ingestion.adapters.detect import detect_format
from charity_ingestion.adapters.json_adapter import JsonSourceAdapter
from charity_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter
from charity_ingestion.adapters.zip_csv_adapter import SOURCE_FILE_KEY, ZipCsvSourceAdapter
from charity_ingestion.domain.types import SourceFormat


def default_adapters() -> dict[SourceFormat, SourceAdapter]:
    """One adapter instance per supported format."""
    return {
        SourceFormat.XLSX: XlsxSourceAdapter(),
        SourceFormat.CSV_ZIP: ZipCsvSourceAdapter(),
        SourceFormat.CSV: CsvSourceAdapter(),
        SourceFormat.JSON: JsonSourceAdapter(),
    }


__all__ = [
    "SOURCE_FILE_KEY",
    "SourceAdapter",
    "SourceProbe",
    "CsvSourceAdapter",
    "JsonSourceAdapter",
    "XlsxSourceAdapter",
    "ZipCsvSourceAdapter",
    "default_adapters",
    "detect_format",
]
