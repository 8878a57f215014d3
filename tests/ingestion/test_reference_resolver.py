"""Tests for find-or-create of products and categories."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from charity_kernel.exceptions import ReferenceResolutionError
from charity_ingestion.domain.types import LineItem
from charity_ingestion.models.records import CategoryModel, ProductModel
from charity_ingestion.services.reference_resolver import ReferenceResolver


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def _seed_product(store, natural_key: str):
    product_id = uuid4()
    with store.session_scope() as s:
        s.add(ProductModel(id=product_id, natural_key=natural_key, name=natural_key))
    return product_id


class _StaleLookupResolver(ReferenceResolver):
    """Misses the product on the first lookup, as if another import inserted it meanwhile."""

    def __init__(self, session, misses: int = 1):
        super().__init__(session)
        self.misses = misses
        self.lookups = 0

    def _find_product(self, natural_key):
        self.lookups += 1
        if self.lookups <= self.misses:
            return None
        return super()._find_product(natural_key)


class TestSequentialResolution:

    def test_same_key_twice_creates_one_row(self, session):
        resolver = ReferenceResolver(session)
        first = resolver.resolve_product("p1", "Бинт")
        second = resolver.resolve_product("p1", "Бинт еластичний")
        assert first == second
        assert _count(session, ProductModel) == 1

    def test_new_resolver_finds_committed_row(self, store):
        with store.session_scope() as s:
            first = ReferenceResolver(s).resolve_product("p1", "Бинт")
        with store.session_scope() as s:
            assert ReferenceResolver(s).resolve_product("p1", "Бинт") == first
            assert _count(s, ProductModel) == 1

    def test_name_used_when_key_missing(self, session):
        resolver = ReferenceResolver(session)
        product_id = resolver.resolve_product(None, " Вода ")
        assert resolver.resolve_product("Вода", "Вода") == product_id

    def test_category_created_with_product(self, session):
        resolver = ReferenceResolver(session)
        product_id = resolver.resolve_product("p1", "Бинт", "Медицина")
        resolver.resolve_product("p2", "Турнікет", "Медицина")

        assert _count(session, CategoryModel) == 1
        product = session.get(ProductModel, product_id)
        assert product.category_id == resolver.resolve_category("Медицина")

    def test_resolve_items_fills_product_ids(self, session):
        items = (
            LineItem("p1", "Бинт", Decimal("1"), Decimal("5"), Decimal("5")),
            LineItem("p1", "Бинт", Decimal("2"), Decimal("5"), Decimal("10")),
        )
        resolved = ReferenceResolver(session).resolve_items(items)
        assert resolved[0].product_id is not None
        assert resolved[0].product_id == resolved[1].product_id
        assert items[0].product_id is None


class TestConflictResolution:

    def test_conflict_refetches_existing_row(self, store, captured_logs):
        existing = _seed_product(store, "p1")

        session = store.session()
        try:
            resolver = _StaleLookupResolver(session)
            assert resolver.resolve_product("p1", "Бинт") == existing
            assert _count(session, ProductModel) == 1
            session.commit()
        finally:
            session.close()

        events = [r["message"] for r in captured_logs()]
        assert "reference_insert_conflict" in events
        assert "reference_created" not in events

    def test_session_usable_after_conflict(self, store):
        _seed_product(store, "p1")
        session = store.session()
        try:
            resolver = _StaleLookupResolver(session)
            resolver.resolve_product("p1", "Бинт")
            resolver.resolve_product("p2", "Турнікет")
            session.commit()
        finally:
            session.close()

        with store.session_scope() as s:
            assert _count(s, ProductModel) == 2

    def test_conflict_without_refetch_raises(self, store):
        _seed_product(store, "p1")
        session = store.session()
        try:
            resolver = _StaleLookupResolver(session, misses=2)
            with pytest.raises(ReferenceResolutionError) as exc_info:
                resolver.resolve_product("p1", "Бинт")
            assert exc_info.value.natural_key == "p1"
            assert exc_info.value.entity_kind == "product"
        finally:
            session.rollback()
            session.close()


class TestForget:

    def test_forget_drops_memoised_ids(self, session):
        resolver = ReferenceResolver(session)
        resolver.resolve_product("p1", "Бинт")
        session.rollback()
        resolver.forget()

        recreated = resolver.resolve_product("p1", "Бинт")
        assert session.get(ProductModel, recreated) is not None
