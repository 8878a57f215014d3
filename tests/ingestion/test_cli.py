"""Tests for the charity-import command line."""

import json

import pytest
from sqlalchemy.exc import OperationalError

from charity_ingestion.cli import EXIT_ERROR, EXIT_OK, EXIT_PARTIAL, main
from charity_ingestion.services.batch_writer import BatchWriter

HEADER = ["Дата", "Сума", "Валюта", "Призначення"]


@pytest.fixture
def db_args(tmp_path):
    return ["--database-url", f"sqlite:///{tmp_path / 'cli.db'}"]


@pytest.fixture
def statement(tmp_path, xlsx_source):
    rows = [HEADER] + [[f"0{i}.02.2025", 10 * i, "грн", "Внесок"] for i in range(1, 4)]
    path = tmp_path / "statement.xlsx"
    path.write_bytes(xlsx_source(rows).content)
    return path


def _run(capsys, argv):
    code = main(argv)
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


class TestRunCommand:

    def test_import_then_list_then_rollback(self, capsys, db_args, statement):
        code, report = _run(
            capsys, db_args + ["run", str(statement), "--kind", "donation", "--source", "privatbank"]
        )
        assert code == EXIT_OK
        assert (report["imported"], report["skipped"], report["status"]) == (3, 0, "completed")
        assert report["total_amount"] == "60"

        code, batches = _run(capsys, db_args + ["batches"])
        assert code == EXIT_OK
        assert [b["batch_id"] for b in batches] == [report["batch_id"]]
        assert batches[0]["original_filenames"] == "statement.xlsx"

        code, result = _run(capsys, db_args + ["rollback", report["batch_id"]])
        assert code == EXIT_OK
        assert result["records_deleted"] == 3
        assert result["batch_deleted"] is True

        code, batches = _run(capsys, db_args + ["batches"])
        assert batches == []

    def test_preview_writes_nothing(self, capsys, db_args, statement):
        code, preview = _run(
            capsys,
            db_args + ["run", str(statement), "--kind", "donation", "--source", "privatbank", "--preview"],
        )
        assert code == EXIT_OK
        assert (preview["attempted"], preview["accepted"], preview["skipped"]) == (3, 3, 0)

        _, batches = _run(capsys, db_args + ["batches"])
        assert batches == []

    def test_partial_write_exit_code(self, capsys, db_args, statement, monkeypatch):
        def fail(self, batch_id, chunk):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(BatchWriter, "_write_chunk", fail)
        code, report = _run(
            capsys, db_args + ["run", str(statement), "--kind", "donation", "--source", "privatbank"]
        )
        assert code == EXIT_PARTIAL
        assert report["status"] == "failed"
        assert report["failure"]["chunk_index"] == 0

    def test_batches_filters(self, capsys, db_args, statement):
        _run(capsys, db_args + ["run", str(statement), "--kind", "donation", "--source", "mono"])
        _, batches = _run(capsys, db_args + ["batches", "--source", "privatbank"])
        assert batches == []
        _, batches = _run(capsys, db_args + ["batches", "--kind", "donation"])
        assert len(batches) == 1


class TestErrors:

    def test_missing_file(self, capsys, db_args, tmp_path):
        code, out = _run(
            capsys,
            db_args + ["run", str(tmp_path / "nope.xlsx"), "--kind", "donation", "--source", "x"],
        )
        assert code == EXIT_ERROR
        assert out is None

    def test_unreadable_container(self, capsys, db_args, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"not a workbook")
        code = main(db_args + ["run", str(path), "--kind", "donation", "--source", "x"])
        captured = capsys.readouterr()
        assert code == EXIT_ERROR
        assert captured.out == ""
        assert "broken.xlsx" in captured.err

    def test_invalid_batch_id(self, capsys, db_args):
        code, _ = _run(capsys, db_args + ["rollback", "not-a-uuid"])
        assert code == EXIT_ERROR

    def test_bad_settings_file(self, capsys, db_args, tmp_path):
        config = tmp_path / "settings.yaml"
        config.write_text("chunk_size: -1\n", encoding="utf-8")
        code, _ = _run(capsys, ["--config", str(config)] + db_args + ["batches"])
        assert code == EXIT_ERROR

    def test_settings_file_applies(self, capsys, db_args, tmp_path, statement):
        config = tmp_path / "settings.yaml"
        config.write_text("purpose_exclusions:\n  - внесок\n", encoding="utf-8")
        code, report = _run(
            capsys,
            ["--config", str(config)] + db_args
            + ["run", str(statement), "--kind", "donation", "--source", "privatbank"],
        )
        assert code == EXIT_OK
        assert (report["imported"], report["skipped"]) == (0, 3)
