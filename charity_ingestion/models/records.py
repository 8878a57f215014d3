"""
ORM models for imported records, their line items, reference entities and
the batch ledger.

Contract:
    RecordModel rows carry the shared canonical columns plus a JSON ``payload``
    holding the kind-specific fields; ``(kind, external_id)`` is unique so an
    act re-imported under the same id replaces the earlier one.
    LineItemModel rows belong to one record (ON DELETE CASCADE) and also carry
    the batch id so rollback can delete them explicitly.
    ProductModel / CategoryModel natural keys are unique; the resolver relies
    on that constraint for conflict detection.
    ImportBatchModel is the one summary row per import run.

``batch_id`` on records is a plain indexed column, not a foreign key: records
are written before the summary row exists, and rollback deletes by batch id
whether or not the summary row was ever written.

Architecture: charity_ingestion/models. Imports from charity_kernel.db.base only.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from charity_kernel.db.base import Base, TimestampedBase, UUIDString

from charity_ingestion.domain.normalizers import MAX_CURRENCY_LENGTH

if TYPE_CHECKING:
    from charity_ingestion.domain.types import CanonicalRecord, ImportBatch, LineItem


def _to_json_safe(obj: Any) -> Any:
    """Convert values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime, time)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


# =============================================================================
# Reference entities
# =============================================================================


class CategoryModel(TimestampedBase):
    """Product category, keyed by its name."""

    __tablename__ = "product_categories"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)


class ProductModel(TimestampedBase):
    """Product, keyed by the source system's product id (or its name)."""

    __tablename__ = "products"

    natural_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    category_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("product_categories.id"),
        nullable=True,
    )


# =============================================================================
# Batch ledger
# =============================================================================


class ImportBatchModel(TimestampedBase):
    """Summary row of one import run."""

    __tablename__ = "import_batches"

    __table_args__ = (
        Index("ix_import_batches_source_kind", "source", "kind"),
    )

    source: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    original_filenames: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    success_count: Mapped[int] = mapped_column(default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self) -> ImportBatch:
        from charity_ingestion.domain.types import ImportBatch, ImportBatchStatus, RecordKind

        return ImportBatch(
            batch_id=self.id,
            source=self.source,
            kind=RecordKind(self.kind),
            original_filenames=self.original_filenames,
            status=ImportBatchStatus(self.status),
            success_count=self.success_count,
            skipped_count=self.skipped_count,
            total_amount=self.total_amount,
            error_message=self.error_message,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(cls, dto: ImportBatch) -> ImportBatchModel:
        values: dict[str, Any] = {}
        if dto.created_at is not None:
            values["created_at"] = dto.created_at
        return cls(
            id=dto.batch_id,
            source=dto.source,
            kind=dto.kind.value,
            original_filenames=dto.original_filenames,
            status=dto.status.value,
            success_count=dto.success_count,
            skipped_count=dto.skipped_count,
            total_amount=dto.total_amount,
            error_message=dto.error_message,
            completed_at=dto.completed_at,
            **values,
        )


# =============================================================================
# Canonical records
# =============================================================================


class RecordModel(TimestampedBase):
    """One imported donation or act."""

    __tablename__ = "import_records"

    __table_args__ = (
        UniqueConstraint("kind", "external_id", name="uq_import_records_kind_external_id"),
        Index("ix_import_records_batch_id", "batch_id"),
        Index("ix_import_records_kind_occurred_at", "kind", "occurred_at"),
    )

    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(MAX_CURRENCY_LENGTH), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_row: Mapped[int] = mapped_column(default=0, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    line_items: Mapped[list["LineItemModel"]] = relationship(
        "LineItemModel",
        back_populates="record",
        order_by="LineItemModel.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dto(self) -> CanonicalRecord:
        from charity_ingestion.domain.types import (
            CanonicalRecord,
            DistributionActPayload,
            DonationPayload,
            PropertyActPayload,
            RecordKind,
        )

        kind = RecordKind(self.kind)
        data = self.payload or {}
        match kind:
            case RecordKind.DONATION:
                payload = DonationPayload(
                    local_amount=_optional_decimal(data.get("local_amount")),
                    purpose=data.get("purpose", ""),
                    source_id=data.get("source_id"),
                )
            case RecordKind.DISTRIBUTION_ACT:
                payload = DistributionActPayload(
                    receiver=data.get("receiver", ""),
                    receiver_group=data.get("receiver_group"),
                    act_number=data.get("act_number"),
                )
            case RecordKind.PROPERTY_ACT:
                payload = PropertyActPayload(
                    act_number=data.get("act_number", ""),
                    donor=data.get("donor", ""),
                )

        return CanonicalRecord(
            kind=kind,
            occurred_at=self.occurred_at,
            amount=self.amount,
            currency=self.currency,
            payload=payload,
            line_items=tuple(item.to_dto() for item in self.line_items),
            external_id=self.external_id,
            note=self.note,
            source_row=self.source_row,
            batch_id=self.batch_id,
        )

    @staticmethod
    def values_from_dto(dto: CanonicalRecord, batch_id: UUID) -> dict[str, Any]:
        """Column values for a bulk INSERT or UPDATE of one record."""
        return {
            "batch_id": batch_id,
            "kind": dto.kind.value,
            "external_id": dto.external_id,
            "occurred_at": dto.occurred_at,
            "amount": dto.amount,
            "currency": dto.currency,
            "note": dto.note,
            "source_row": dto.source_row,
            "payload": _to_json_safe(asdict(dto.payload)),
        }


class LineItemModel(TimestampedBase):
    """One position of an act."""

    __tablename__ = "import_line_items"

    __table_args__ = (
        Index("ix_import_line_items_record_id", "record_id"),
        Index("ix_import_line_items_batch_id", "batch_id"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )
    product_key: Mapped[str] = mapped_column(String(200), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    category_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_sum: Mapped[Decimal] = mapped_column(nullable=False)

    record: Mapped["RecordModel"] = relationship(
        "RecordModel",
        back_populates="line_items",
    )

    def to_dto(self) -> LineItem:
        from charity_ingestion.domain.types import LineItem

        return LineItem(
            product_key=self.product_key,
            product_name=self.product_name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_sum=self.line_sum,
            category_name=self.category_name,
            product_id=self.product_id,
        )

    @staticmethod
    def values_from_dto(
        dto: LineItem,
        record_id: UUID,
        batch_id: UUID,
        position: int,
    ) -> dict[str, Any]:
        return {
            "record_id": record_id,
            "batch_id": batch_id,
            "position": position,
            "product_id": dto.product_id,
            "product_key": dto.product_key,
            "product_name": dto.product_name,
            "category_name": dto.category_name,
            "quantity": dto.quantity,
            "unit_price": dto.unit_price,
            "line_sum": dto.line_sum,
        }
