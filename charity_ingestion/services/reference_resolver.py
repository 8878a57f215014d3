"""
Reference resolver: natural key -> stored product / category id.

Contract:
    resolve_product(key, name, category_name) and resolve_category(name)
    return the id of the one row holding that natural key, creating it on
    first sight. Resolving the same key twice never creates a second row.

Algorithm (explicit insert-then-refetch, no dialect-specific upsert):
    1. look the key up;
    2. if absent, INSERT inside a SAVEPOINT;
    3. on IntegrityError (a concurrent import created it first) roll back
       the savepoint and look the key up again.
    Resolved ids are memoised for the lifetime of the resolver.

Failure modes:
    - ReferenceResolutionError if the insert conflicted yet the re-fetch
      finds no row.
    - Other SQLAlchemy errors propagate.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from charity_kernel.exceptions import ReferenceResolutionError
from charity_kernel.logging_config import get_logger

from charity_ingestion.domain.types import LineItem
from charity_ingestion.models.records import CategoryModel, ProductModel

logger = get_logger("ingestion.reference_resolver")


class ReferenceResolver:
    """Idempotent find-or-create for products and categories."""

    def __init__(self, session: Session):
        self._session = session
        self._products: dict[str, UUID] = {}
        self._categories: dict[str, UUID] = {}

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _find_category(self, name: str) -> UUID | None:
        return self._session.execute(
            select(CategoryModel.id).where(CategoryModel.name == name)
        ).scalar_one_or_none()

    def _find_product(self, natural_key: str) -> UUID | None:
        return self._session.execute(
            select(ProductModel.id).where(ProductModel.natural_key == natural_key)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Insert-then-refetch
    # -------------------------------------------------------------------------

    def _insert_or_fetch(
        self,
        entity: CategoryModel | ProductModel,
        refetch: Callable[[], UUID | None],
        entity_kind: str,
        natural_key: str,
    ) -> UUID:
        try:
            with self._session.begin_nested():
                self._session.add(entity)
                self._session.flush()
        except IntegrityError:
            logger.info(
                "reference_insert_conflict",
                extra={"entity_kind": entity_kind, "natural_key": natural_key},
            )
            existing = refetch()
            if existing is None:
                raise ReferenceResolutionError(entity_kind, natural_key) from None
            return existing

        logger.info(
            "reference_created",
            extra={"entity_kind": entity_kind, "natural_key": natural_key, "entity_id": str(entity.id)},
        )
        return entity.id

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def resolve_category(self, name: str) -> UUID:
        key = name.strip()
        cached = self._categories.get(key)
        if cached is not None:
            return cached

        category_id = self._find_category(key)
        if category_id is None:
            category_id = self._insert_or_fetch(
                CategoryModel(id=uuid4(), name=key),
                lambda: self._find_category(key),
                "category",
                key,
            )
        self._categories[key] = category_id
        return category_id

    def resolve_product(
        self,
        key: str | None,
        name: str,
        category_name: str | None = None,
    ) -> UUID:
        """
        Return the product id for ``key``, falling back to ``name`` when the
        source has no product id. The category is only resolved when the
        product has to be created.
        """
        natural_key = (key or name).strip()
        cached = self._products.get(natural_key)
        if cached is not None:
            return cached

        product_id = self._find_product(natural_key)
        if product_id is None:
            category_id = None
            if category_name and category_name.strip():
                category_id = self.resolve_category(category_name)
            product_id = self._insert_or_fetch(
                ProductModel(
                    id=uuid4(),
                    natural_key=natural_key,
                    name=(name or natural_key).strip(),
                    category_id=category_id,
                ),
                lambda: self._find_product(natural_key),
                "product",
                natural_key,
            )
        self._products[natural_key] = product_id
        return product_id

    def resolve_items(self, items: Iterable[LineItem]) -> tuple[LineItem, ...]:
        """Return ``items`` with ``product_id`` filled in."""
        return tuple(
            replace(
                item,
                product_id=self.resolve_product(
                    item.product_key, item.product_name, item.category_name
                ),
            )
            for item in items
        )

    def forget(self) -> None:
        """Drop memoised ids (after a rollback discarded rows created here)."""
        self._products.clear()
        self._categories.clear()
