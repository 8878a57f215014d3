"""
Batch ledger: one summary row per import run, and compensating rollback.

Contract:
    record(batch) stores the summary row of a finished run.
    rollback(batch_id) deletes the batch's line items, then its records,
    then the summary row. It is the only recovery path for a partial write.

Invariants:
    - Rollback touches only rows tagged with ``batch_id``; records of other
      batches are untouched.
    - Rollback is idempotent: an unknown or already rolled-back id is a
      no-op returning zero counts.
    - Reference entities (products, categories) are never deleted.

The ledger flushes; the caller owns the transaction.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from charity_kernel.exceptions import BatchNotFoundError
from charity_kernel.logging_config import get_logger

from charity_ingestion.domain.types import (
    CanonicalRecord,
    ImportBatch,
    RecordKind,
    RollbackResult,
)
from charity_ingestion.models.records import ImportBatchModel, LineItemModel, RecordModel

logger = get_logger("ingestion.batch_ledger")


class BatchLedger:
    """Read/write access to import batch summaries."""

    def __init__(self, session: Session):
        self._session = session

    def record(self, batch: ImportBatch) -> ImportBatch:
        model = ImportBatchModel.from_dto(batch)
        self._session.add(model)
        self._session.flush()
        logger.info(
            "batch_recorded",
            extra={
                "batch_id": str(batch.batch_id),
                "status": batch.status.value,
                "success_count": batch.success_count,
                "skipped_count": batch.skipped_count,
            },
        )
        return batch

    def find(self, batch_id: UUID) -> ImportBatch | None:
        model = self._session.scalars(
            select(ImportBatchModel).where(ImportBatchModel.id == batch_id)
        ).first()
        return model.to_dto() if model is not None else None

    def get(self, batch_id: UUID) -> ImportBatch:
        """
        Raises:
            BatchNotFoundError: no summary row for ``batch_id``.
        """
        batch = self.find(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def list_batches(
        self,
        source: str | None = None,
        kind: RecordKind | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ImportBatch]:
        """Summaries, newest first."""
        query = select(ImportBatchModel).order_by(
            ImportBatchModel.created_at.desc(), ImportBatchModel.id
        )
        if source is not None:
            query = query.where(ImportBatchModel.source == source)
        if kind is not None:
            query = query.where(ImportBatchModel.kind == kind.value)
        query = query.offset(offset).limit(limit)
        return [m.to_dto() for m in self._session.scalars(query).all()]

    def count_records(self, batch_id: UUID) -> int:
        return self._session.execute(
            select(func.count()).select_from(RecordModel).where(RecordModel.batch_id == batch_id)
        ).scalar_one()

    def records_for(self, batch_id: UUID) -> list[CanonicalRecord]:
        """Records tagged with ``batch_id``, in source-row order."""
        models = self._session.scalars(
            select(RecordModel)
            .where(RecordModel.batch_id == batch_id)
            .order_by(RecordModel.source_row, RecordModel.id)
        ).all()
        return [m.to_dto() for m in models]

    def rollback(self, batch_id: UUID) -> RollbackResult:
        """Delete everything the batch wrote, then its summary row."""
        items = self._session.execute(
            delete(LineItemModel)
            .where(LineItemModel.batch_id == batch_id)
        )
        records = self._session.execute(
            delete(RecordModel)
            .where(RecordModel.batch_id == batch_id)
        )
        summary = self._session.execute(
            delete(ImportBatchModel)
            .where(ImportBatchModel.id == batch_id)
        )
        self._session.flush()

        result = RollbackResult(
            batch_id=batch_id,
            records_deleted=records.rowcount or 0,
            line_items_deleted=items.rowcount or 0,
            batch_deleted=bool(summary.rowcount),
        )
        logger.info(
            "batch_rolled_back",
            extra={
                "batch_id": str(batch_id),
                "records_deleted": result.records_deleted,
                "line_items_deleted": result.line_items_deleted,
                "batch_deleted": result.batch_deleted,
            },
        )
        return result
