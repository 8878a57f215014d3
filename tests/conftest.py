"""
Pytest fixtures for the charity import engine test suite.

Provides:
- A SQLite-backed Store per test (database file under tmp_path)
- A DeterministicClock
- Structured-log capture
- Builders for xlsx workbooks and zip archives held in memory
"""

import io
import json
import logging
import zipfile
from io import StringIO
from typing import Any, Sequence

import pytest
from openpyxl import Workbook

from charity_config.schema import DEFAULT_SETTINGS
from charity_kernel.clock import DeterministicClock
from charity_kernel.db.engine import Store
from charity_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from charity_ingestion.domain.types import SourceFile


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture charity_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.run_import(request)
            logs = captured_logs()
            assert any(r["message"] == "import_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("charity_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Store / clock / settings
# =============================================================================


@pytest.fixture
def store(tmp_path) -> Store:
    """Fresh SQLite database with all tables created."""
    s = Store.from_url(f"sqlite:///{tmp_path / 'imports.db'}")
    s.create_tables()
    yield s
    s.dispose()


@pytest.fixture
def session(store):
    sess = store.session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def settings():
    return DEFAULT_SETTINGS


# =============================================================================
# In-memory source builders
# =============================================================================


def make_xlsx(rows: Sequence[Sequence[Any]], name: str = "statement.xlsx") -> SourceFile:
    """Workbook with one sheet; ``rows[0]`` is the header."""
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return SourceFile(name=name, content=buf.getvalue())


def make_zip(members: dict[str, str], name: str = "export.zip", encoding: str = "utf-8") -> SourceFile:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for member, text in members.items():
            zf.writestr(member, text.encode(encoding))
    return SourceFile(name=name, content=buf.getvalue())


def make_json(data: Any, name: str = "acts.json") -> SourceFile:
    return SourceFile(name=name, content=json.dumps(data, ensure_ascii=False).encode("utf-8"))


@pytest.fixture
def xlsx_source():
    return make_xlsx


@pytest.fixture
def zip_source():
    return make_zip


@pytest.fixture
def json_source():
    return make_json
