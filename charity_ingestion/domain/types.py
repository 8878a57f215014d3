"""
charity_ingestion.domain.types -- Pure frozen dataclasses for the import engine.

ZERO I/O.

Canonical records are a tagged variant: one ``CanonicalRecord`` shape with the
shared fields, a ``kind`` discriminator and a kind-specific ``payload``.
Consumers dispatch with ``match record.payload`` rather than subclass methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class RecordKind(str, Enum):
    """Target dataset of an import."""

    DONATION = "donation"
    DISTRIBUTION_ACT = "distribution_act"
    PROPERTY_ACT = "property_act"


class SourceFormat(str, Enum):
    """Container shapes the parsers accept."""

    XLSX = "xlsx"
    CSV_ZIP = "csv_zip"
    CSV = "csv"
    JSON = "json"


class SkipCategory(str, Enum):
    """Why a row was not imported."""

    BUSINESS_RULE = "business_rule"  # Excluded on purpose (classification, purpose pattern)
    MALFORMED = "malformed"  # Missing or unparseable required data
    SUPERSEDED = "superseded"  # A later row in the same import has the same external id


class ImportBatchStatus(str, Enum):
    """Outcome of the write phase of an import."""

    COMPLETED = "completed"  # Every accepted record written
    PARTIAL = "partial"  # Some chunks written, then a failure
    FAILED = "failed"  # First chunk failed; nothing written


# =============================================================================
# Sources
# =============================================================================


@dataclass(frozen=True)
class SourceFile:
    """Raw bytes of one uploaded file."""

    name: str
    content: bytes

    @property
    def suffix(self) -> str:
        dot = self.name.rfind(".")
        return self.name[dot:].lower() if dot >= 0 else ""


# =============================================================================
# Canonical records
# =============================================================================


@dataclass(frozen=True)
class LineItem:
    """
    One position of an act.

    ``line_sum == round(quantity * unit_price, 2)`` unless the source supplied
    the sum, in which case the sum is authoritative and the price derived.
    """

    product_key: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    line_sum: Decimal
    category_name: str | None = None
    product_id: UUID | None = None  # Filled by the reference resolver


@dataclass(frozen=True)
class DonationPayload:
    local_amount: Decimal | None = None  # Primary (local-currency) amount
    purpose: str = ""
    source_id: str | None = None


@dataclass(frozen=True)
class DistributionActPayload:
    receiver: str
    receiver_group: str | None = None
    act_number: str | None = None


@dataclass(frozen=True)
class PropertyActPayload:
    act_number: str
    donor: str


RecordPayload = DonationPayload | DistributionActPayload | PropertyActPayload


@dataclass(frozen=True)
class CanonicalRecord:
    """Fully normalized, store-ready representation of one transaction or act."""

    kind: RecordKind
    occurred_at: datetime
    amount: Decimal
    currency: str
    payload: RecordPayload
    line_items: tuple[LineItem, ...] = ()
    external_id: str | None = None  # Natural key for replace semantics (acts)
    note: str | None = None
    source_row: int = 0
    batch_id: UUID | None = None  # Assigned by the batch writer


@dataclass(frozen=True)
class SkipRecord:
    """Diagnostic for a row that was not imported."""

    source_row: int
    category: SkipCategory
    reasons: tuple[str, ...]
    raw_row: dict[str, Any]

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_row": self.source_row,
            "category": self.category.value,
            "reason": self.reason,
            "raw_row": self.raw_row,
        }


# =============================================================================
# Batch ledger DTOs
# =============================================================================


@dataclass(frozen=True)
class ImportBatch:
    """Immutable snapshot of one import run's summary row."""

    batch_id: UUID
    source: str
    kind: RecordKind
    original_filenames: str
    status: ImportBatchStatus
    success_count: int = 0
    skipped_count: int = 0
    total_amount: Decimal = Decimal("0")
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class RollbackResult:
    """What a rollback removed. All zeros for an unknown batch id."""

    batch_id: UUID
    records_deleted: int = 0
    line_items_deleted: int = 0
    batch_deleted: bool = False


# =============================================================================
# Requests and reports
# =============================================================================


@dataclass(frozen=True)
class ImportRequest:
    """One caller-initiated import: files plus metadata."""

    sources: tuple[SourceFile, ...]
    kind: RecordKind
    source_label: str
    source_format: SourceFormat | None = None  # None -> sniff per file
    source_id: str | None = None  # Donation source reference, copied to payloads


@dataclass(frozen=True)
class WriteFailure:
    """Point of failure of the write phase."""

    chunk_index: int  # 0-based
    rows_written: int
    message: str
    cancelled: bool = False


@dataclass(frozen=True)
class ImportPreview:
    """Classification result without any writes."""

    records: tuple[CanonicalRecord, ...]
    skips: tuple[SkipRecord, ...]

    @property
    def attempted(self) -> int:
        return len(self.records) + len(self.skips)


@dataclass(frozen=True)
class ImportReport:
    """
    Result of ``ImportService.run_import``.

    ``attempted == imported + skipped + unwritten``; ``unwritten`` is non-zero
    only when the write phase stopped early.
    """

    batch_id: UUID
    status: ImportBatchStatus
    attempted: int
    imported: int
    skipped: int
    skips: tuple[SkipRecord, ...] = ()
    total_amount: Decimal = Decimal("0")
    failure: WriteFailure | None = None

    @property
    def unwritten(self) -> int:
        return self.attempted - self.imported - self.skipped

    def raise_for_failure(self) -> None:
        """Raise ChunkWriteError if the write phase stopped early."""
        if self.failure is None:
            return
        from charity_kernel.exceptions import ChunkWriteError

        raise ChunkWriteError(
            batch_id=self.batch_id,
            chunk_index=self.failure.chunk_index,
            rows_written=self.failure.rows_written,
            reason=self.failure.message,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id),
            "status": self.status.value,
            "attempted": self.attempted,
            "imported": self.imported,
            "skipped": self.skipped,
            "total_amount": str(self.total_amount),
            "failure": None if self.failure is None else {
                "chunk_index": self.failure.chunk_index,
                "rows_written": self.failure.rows_written,
                "message": self.failure.message,
                "cancelled": self.failure.cancelled,
            },
            "skips": [s.to_dict() for s in self.skips],
        }
