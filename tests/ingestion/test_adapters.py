"""Tests for source adapters and format sniffing."""

from datetime import datetime

import pytest

from charity_ingestion.adapters import (
    SOURCE_FILE_KEY,
    CsvSourceAdapter,
    JsonSourceAdapter,
    SourceProbe,
    XlsxSourceAdapter,
    ZipCsvSourceAdapter,
    detect_format,
)
from charity_ingestion.domain.types import SourceFile, SourceFormat
from charity_kernel.exceptions import ContainerError, UnsupportedFormatError


class TestXlsxSourceAdapter:
    """First sheet, first row header, native cell types."""

    def test_read_keeps_native_types(self, xlsx_source):
        source = xlsx_source([
            ["Дата", "Сума", "Валюта"],
            [datetime(2025, 1, 5, 10, 0), 100.5, "грн"],
            ["06.01.2025 11:00:00", "200,00", None],
        ])
        rows = list(XlsxSourceAdapter().read(source, {}))
        assert rows == [
            {"Дата": datetime(2025, 1, 5, 10, 0), "Сума": 100.5, "Валюта": "грн"},
            {"Дата": "06.01.2025 11:00:00", "Сума": "200,00", "Валюта": None},
        ]

    def test_blank_rows_dropped(self, xlsx_source):
        source = xlsx_source([["a", "b"], [1, 2], [None, None], ["  ", None], [3, 4]])
        rows = list(XlsxSourceAdapter().read(source, {}))
        assert rows == [{"a": 1, "b": 2}, {"a": 3, "b": 4}]

    def test_duplicate_headers_deduped(self, xlsx_source):
        source = xlsx_source([["Сума", "Валюта", "Сума", "Валюта"], [1, "UAH", 2, "USD"]])
        (row,) = XlsxSourceAdapter().read(source, {})
        assert list(row) == ["Сума", "Валюта", "Сума_1", "Валюта_1"]

    def test_empty_workbook_yields_nothing(self, xlsx_source):
        assert list(XlsxSourceAdapter().read(xlsx_source([]), {})) == []

    def test_corrupt_workbook_fails_before_rows(self):
        source = SourceFile("broken.xlsx", b"this is not a workbook")
        with pytest.raises(ContainerError) as exc_info:
            XlsxSourceAdapter().read(source, {})
        assert exc_info.value.filename == "broken.xlsx"

    def test_probe(self, xlsx_source):
        source = xlsx_source([["x", "y"]] + [[i, i * 2] for i in range(8)])
        probe = XlsxSourceAdapter().probe(source, {})
        assert isinstance(probe, SourceProbe)
        assert probe.row_count == 8
        assert probe.columns == ("x", "y")
        assert len(probe.sample_rows) == 5


class TestCsvSourceAdapter:

    def test_semicolon_sniffed_and_bom_stripped(self):
        source = SourceFile("a.csv", "\ufeffДата;Сума\n05.01.2025;10,5\n".encode("utf-8"))
        rows = list(CsvSourceAdapter().read(source, {}))
        assert rows == [{"Дата": "05.01.2025", "Сума": "10,5"}]

    def test_explicit_delimiter(self):
        source = SourceFile("a.csv", b"a|b\n1|2\n")
        assert list(CsvSourceAdapter().read(source, {"delimiter": "|"})) == [{"a": "1", "b": "2"}]

    def test_undecodable_bytes(self):
        source = SourceFile("a.csv", b"\xff\xfe\x00bad")
        with pytest.raises(ContainerError):
            CsvSourceAdapter().read(source, {})

    def test_probe(self):
        source = SourceFile("a.csv", b"x,y\n1,2\n3,4\n5,6\n")
        probe = CsvSourceAdapter().probe(source, {})
        assert probe.row_count == 3
        assert probe.columns == ("x", "y")
        assert probe.detected_delimiter == ","


class TestZipCsvSourceAdapter:
    """Every CSV member parsed; rows concatenated in member-name order."""

    def test_members_concatenated_in_name_order(self, zip_source):
        source = zip_source({
            "b_feb.csv": "Дата платежу,Сума платежу\n01.02.2025,20\n",
            "a_jan.csv": "Дата платежу,Сума платежу\n01.01.2025,10\n02.01.2025,11\n",
            "readme.md": "ignored",
        })
        rows = list(ZipCsvSourceAdapter().read(source, {}))
        assert [r["Сума платежу"] for r in rows] == ["10", "11", "20"]
        assert [r[SOURCE_FILE_KEY] for r in rows] == ["a_jan.csv", "a_jan.csv", "b_feb.csv"]

    def test_members_may_use_different_delimiters(self, zip_source):
        source = zip_source({
            "1.csv": "a;b\n1;2\n",
            "2.csv": "a\tb\n3\t4\n",
        })
        rows = list(ZipCsvSourceAdapter().read(source, {}))
        assert [(r["a"], r["b"]) for r in rows] == [("1", "2"), ("3", "4")]

    def test_not_a_zip(self):
        with pytest.raises(ContainerError):
            ZipCsvSourceAdapter().read(SourceFile("x.zip", b"PK\x03\x04garbage"), {})

    def test_zip_without_csv_members(self, zip_source):
        with pytest.raises(ContainerError):
            ZipCsvSourceAdapter().read(zip_source({"notes.md": "hi"}), {})

    def test_configured_extensions(self, zip_source):
        source = zip_source({"data.tsv": "a\tb\n1\t2\n"})
        rows = list(ZipCsvSourceAdapter().read(source, {"text_extensions": (".tsv",)}))
        assert rows[0]["a"] == "1"


class TestJsonSourceAdapter:

    def test_array_of_objects_keeps_nested_items(self, json_source):
        source = json_source([
            {"id": "A-1", "items": [{"product_id": "p1", "qty": 2}]},
            {"id": "A-2", "items": []},
        ])
        rows = list(JsonSourceAdapter().read(source, {}))
        assert len(rows) == 2
        assert rows[0]["items"] == [{"product_id": "p1", "qty": 2}]

    def test_single_object_is_one_row(self, json_source):
        assert list(JsonSourceAdapter().read(json_source({"id": "A-1"}), {})) == [{"id": "A-1"}]

    @pytest.mark.parametrize("payload", [b"[1, 2]", b'"text"', b"{broken", b'[{"a": 1}, "x"]'])
    def test_non_conforming_documents(self, payload):
        with pytest.raises(ContainerError):
            JsonSourceAdapter().read(SourceFile("acts.json", payload), {})


class TestDetectFormat:

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("s.xlsx", SourceFormat.XLSX),
            ("S.XLSX", SourceFormat.XLSX),
            ("mono.zip", SourceFormat.CSV_ZIP),
            ("a.csv", SourceFormat.CSV),
            ("acts.json", SourceFormat.JSON),
        ],
    )
    def test_by_extension(self, name, expected):
        assert detect_format(SourceFile(name, b"")) == expected

    def test_by_content(self, xlsx_source, zip_source):
        assert detect_format(SourceFile("upload", xlsx_source([["a"]]).content)) == SourceFormat.XLSX
        assert detect_format(SourceFile("upload", zip_source({"a.csv": "a\n1\n"}).content)) == SourceFormat.CSV_ZIP
        assert detect_format(SourceFile("upload", b'  [{"a": 1}]')) == SourceFormat.JSON

    def test_unknown(self):
        with pytest.raises(UnsupportedFormatError):
            detect_format(SourceFile("upload.bin", b"\x00\x01"))
