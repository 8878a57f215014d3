"""
Batch writer: persist accepted records in bounded, independently committed
chunks tagged with one batch id.

Contract:
    write(batch_id, records) splits N records into ceil(N / chunk_size)
    sequential chunks. Each chunk is one bulk INSERT of its records (plus
    the line items of acts) committed on its own.

Invariants:
    - A failed chunk is rolled back and the run stops; earlier chunks stay
      committed. No cleanup is attempted: the caller decides whether to roll
      the batch back.
    - Acts with an external id use replace semantics keyed by
      (kind, external_id): the existing row is updated and re-tagged with
      the new batch id, and its old line items are deleted before the new
      ones are inserted.
    - ``rows_written`` and ``total_amount`` count stored rows, not input
      records: an external id seen twice in one run counts once, with the
      amount of the version that was written last.
    - ``should_continue`` (if given) is consulted between chunks only, so a
      chunk is never half-written by cancellation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from charity_kernel.exceptions import ResolutionError
from charity_kernel.logging_config import get_logger

from charity_ingestion.domain.types import CanonicalRecord, WriteFailure
from charity_ingestion.models.records import LineItemModel, RecordModel
from charity_ingestion.services.reference_resolver import ReferenceResolver

logger = get_logger("ingestion.batch_writer")

DEFAULT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one write run."""

    rows_written: int
    chunks_written: int
    chunks_planned: int
    total_amount: Decimal = Decimal("0")
    failure: WriteFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


def plan_chunks(records: Sequence[CanonicalRecord], chunk_size: int) -> list[Sequence[CanonicalRecord]]:
    """Split records into consecutive chunks of at most ``chunk_size``."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [records[i : i + chunk_size] for i in range(0, len(records), chunk_size)]


class BatchWriter:
    """Chunked, per-chunk-committed writer for canonical records."""

    def __init__(
        self,
        session: Session,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        resolver: ReferenceResolver | None = None,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._session = session
        self._chunk_size = chunk_size
        self._resolver = resolver or ReferenceResolver(session)

    def write(
        self,
        batch_id: UUID,
        records: Sequence[CanonicalRecord],
        should_continue: Callable[[], bool] | None = None,
    ) -> WriteResult:
        chunks = plan_chunks(list(records), self._chunk_size)
        planned = len(chunks)

        # Stored amount per row key; unkeyed records always get a fresh key.
        stored: dict[object, Decimal] = {}
        rows_written = 0
        chunks_written = 0
        failure: WriteFailure | None = None

        for index, chunk in enumerate(chunks):
            if index > 0 and should_continue is not None and not should_continue():
                failure = WriteFailure(
                    chunk_index=index,
                    rows_written=rows_written,
                    message="cancelled before chunk",
                    cancelled=True,
                )
                logger.warning(
                    "batch_write_cancelled",
                    extra={"chunk_index": index, "rows_written": rows_written},
                )
                break

            try:
                written = self._write_chunk(batch_id, chunk)
                self._session.commit()
            except (SQLAlchemyError, ResolutionError) as exc:
                self._session.rollback()
                self._resolver.forget()
                failure = WriteFailure(
                    chunk_index=index,
                    rows_written=rows_written,
                    message=str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                )
                logger.error(
                    "chunk_write_failed",
                    extra={
                        "chunk_index": index,
                        "chunks_planned": planned,
                        "rows_written": rows_written,
                        "error": failure.message,
                    },
                )
                break

            for record in written:
                key = (record.kind.value, record.external_id) if record.external_id else object()
                stored[key] = record.amount
            rows_written = len(stored)
            chunks_written += 1
            logger.info(
                "chunk_written",
                extra={
                    "chunk_index": index,
                    "chunks_planned": planned,
                    "chunk_rows": len(written),
                    "rows_written": rows_written,
                },
            )

        return WriteResult(
            rows_written=rows_written,
            chunks_written=chunks_written,
            chunks_planned=planned,
            total_amount=sum(stored.values(), Decimal("0")),
            failure=failure,
        )

    # -------------------------------------------------------------------------
    # One chunk
    # -------------------------------------------------------------------------

    def _write_chunk(
        self, batch_id: UUID, chunk: Sequence[CanonicalRecord]
    ) -> list[CanonicalRecord]:
        """
        Write one chunk inside the session's current transaction (no commit).

        Returns the records actually stored, after in-chunk duplicates of an
        external id collapsed to the last one.
        """
        existing = self._existing_acts(chunk)

        # Later duplicates of an external id within a chunk win.
        unique: dict[object, CanonicalRecord] = {}
        for position, record in enumerate(chunk):
            key = (record.kind.value, record.external_id) if record.external_id else position
            unique[key] = record

        inserts: list[dict] = []
        updates: list[dict] = []
        planned: list[tuple[UUID, CanonicalRecord]] = []
        for key, record in unique.items():
            values = RecordModel.values_from_dto(record, batch_id)
            record_id = existing.get(key) if isinstance(key, tuple) else None
            if record_id is None:
                record_id = uuid4()
                inserts.append(dict(values, id=record_id))
            else:
                updates.append(dict(values, id=record_id))
            planned.append((record_id, record))

        if updates:
            self._session.execute(update(RecordModel), updates)
            self._session.execute(
                delete(LineItemModel).where(
                    LineItemModel.record_id.in_([u["id"] for u in updates])
                )
            )
        if inserts:
            self._session.execute(insert(RecordModel), inserts)

        items: list[dict] = []
        for record_id, record in planned:
            for position, item in enumerate(self._resolver.resolve_items(record.line_items)):
                items.append(LineItemModel.values_from_dto(item, record_id, batch_id, position))
        if items:
            self._session.execute(insert(LineItemModel), items)
        return [record for _, record in planned]

    def _existing_acts(self, chunk: Sequence[CanonicalRecord]) -> dict[tuple[str, str], UUID]:
        keys: dict[str, set[str]] = {}
        for record in chunk:
            if record.external_id:
                keys.setdefault(record.kind.value, set()).add(record.external_id)
        found: dict[tuple[str, str], UUID] = {}
        for kind, external_ids in keys.items():
            rows = self._session.execute(
                select(RecordModel.id, RecordModel.external_id).where(
                    RecordModel.kind == kind,
                    RecordModel.external_id.in_(external_ids),
                )
            ).all()
            for record_id, external_id in rows:
                found[(kind, external_id)] = record_id
        return found
