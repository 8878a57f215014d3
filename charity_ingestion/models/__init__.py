"""ORM models for the import engine. Importing this package registers all tables."""

from charity_ingestion.models.records import (
    CategoryModel,
    ImportBatchModel,
    LineItemModel,
    ProductModel,
    RecordModel,
)

__all__ = [
    "CategoryModel",
    "ImportBatchModel",
    "LineItemModel",
    "ProductModel",
    "RecordModel",
]
