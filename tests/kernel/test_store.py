"""Tests for the Store handle (charity_kernel/db/engine.py) and the clock."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import inspect, select, text

from charity_kernel.clock import DeterministicClock, SystemClock
from charity_kernel.db.engine import Store
from charity_ingestion.models import CategoryModel


class TestStore:

    def test_create_tables_registers_ingestion_tables(self, store):
        names = set(inspect(store.engine).get_table_names())
        assert {
            "import_batches",
            "import_records",
            "import_line_items",
            "products",
            "product_categories",
        } <= names

    def test_two_stores_do_not_share_state(self, tmp_path):
        a = Store.from_url(f"sqlite:///{tmp_path / 'a.db'}")
        b = Store.from_url(f"sqlite:///{tmp_path / 'b.db'}")
        try:
            a.create_tables()
            b.create_tables()
            with a.session_scope() as s:
                s.add(CategoryModel(id=uuid4(), name="Їжа"))
            with b.session_scope() as s:
                assert s.scalars(select(CategoryModel)).all() == []
        finally:
            a.dispose()
            b.dispose()

    def test_session_scope_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.session_scope() as s:
                s.add(CategoryModel(id=uuid4(), name="Ліки"))
                s.flush()
                raise RuntimeError("boom")
        with store.session_scope() as s:
            assert s.scalars(select(CategoryModel)).all() == []

    def test_sqlite_foreign_keys_enabled(self, store):
        with store.session_scope() as s:
            assert s.execute(text("PRAGMA foreign_keys")).scalar_one() == 1

    def test_savepoint_rollback_keeps_outer_work(self, store):
        with store.session_scope() as s:
            s.add(CategoryModel(id=uuid4(), name="outer"))
            s.flush()
            nested = s.begin_nested()
            s.add(CategoryModel(id=uuid4(), name="inner"))
            s.flush()
            nested.rollback()
        with store.session_scope() as s:
            names = s.scalars(select(CategoryModel.name)).all()
        assert names == ["outer"]

    def test_dialect(self, store):
        assert store.dialect == "sqlite"


class TestClock:

    def test_deterministic_clock_advances(self):
        clock = DeterministicClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert clock.now() == clock.now()
        assert clock.advance() == datetime(2025, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        clock.advance(59)
        assert clock.now() - datetime(2025, 1, 1, tzinfo=timezone.utc) == timedelta(minutes=1)

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is timezone.utc
