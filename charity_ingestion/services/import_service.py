"""
Import service: read -> classify -> write -> record.

Orchestrates source adapters, the row classifier, the batch writer and the
batch ledger for one import request at a time.
Uses structured logging (LogContext, get_logger("ingestion.*")).

Failure modes:
    - ContainerError / UnsupportedFormatError: raised before anything is
      written. No batch id is recorded.
    - A chunk write failure is NOT raised: the report carries the failure
      (chunk index, rows written) and the ledger row has status ``partial``
      or ``failed``. Call ``report.raise_for_failure()`` to turn it into a
      ChunkWriteError.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

from charity_config.schema import DEFAULT_SETTINGS, ImportSettings
from charity_kernel.clock import Clock, SystemClock
from charity_kernel.db.engine import Store
from charity_kernel.exceptions import UnsupportedFormatError
from charity_kernel.logging_config import LogContext, get_logger

from charity_ingestion.adapters import SourceAdapter, SourceProbe, default_adapters, detect_format
from charity_ingestion.domain.classifier import RowClassifier, supersede_duplicates
from charity_ingestion.domain.types import (
    CanonicalRecord,
    ImportBatch,
    ImportBatchStatus,
    ImportPreview,
    ImportReport,
    ImportRequest,
    RecordKind,
    RollbackResult,
    SkipRecord,
    SourceFile,
    SourceFormat,
)
from charity_ingestion.services.batch_ledger import BatchLedger
from charity_ingestion.services.batch_writer import BatchWriter, WriteResult
from charity_ingestion.services.reference_resolver import ReferenceResolver

logger = get_logger("ingestion.import_service")


def _as_uuid(batch_id: UUID | str) -> UUID:
    return batch_id if isinstance(batch_id, UUID) else UUID(str(batch_id))


def _status(result: WriteResult) -> ImportBatchStatus:
    if result.failure is None:
        return ImportBatchStatus.COMPLETED
    if result.rows_written > 0:
        return ImportBatchStatus.PARTIAL
    return ImportBatchStatus.FAILED


class ImportService:
    """
    Entry point for imports, previews, batch listing and rollback.

    Usage:
        service = ImportService(store, settings)
        report = service.run_import(ImportRequest(
            sources=(SourceFile("statement.xlsx", data),),
            kind=RecordKind.DONATION,
            source_label="privatbank",
        ))
        if report.failure:
            service.rollback(report.batch_id)
    """

    def __init__(
        self,
        store: Store,
        settings: ImportSettings = DEFAULT_SETTINGS,
        clock: Clock | None = None,
        adapters: dict[SourceFormat, SourceAdapter] | None = None,
    ):
        self._store = store
        self._settings = settings
        self._clock = clock or SystemClock()
        self._adapters = adapters if adapters is not None else default_adapters()

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _adapter_options(self) -> dict[str, Any]:
        return {"text_extensions": self._settings.text_extensions}

    def _adapter_for(self, source: SourceFile, source_format: SourceFormat | None) -> SourceAdapter:
        fmt = source_format or detect_format(source)
        adapter = self._adapters.get(fmt)
        if adapter is None:
            raise UnsupportedFormatError(fmt.value, source.name)
        return adapter

    def probe_source(self, source: SourceFile, source_format: SourceFormat | None = None) -> SourceProbe:
        return self._adapter_for(source, source_format).probe(source, self._adapter_options())

    def _open_sources(self, request: ImportRequest) -> list[tuple[SourceFile, Iterator[dict[str, Any]]]]:
        """Open and validate every container before any row is classified."""
        options = self._adapter_options()
        streams = []
        for source in request.sources:
            adapter = self._adapter_for(source, request.source_format)
            streams.append((source, adapter.read(source, options)))
            logger.debug("source_opened", extra={"source_file": source.name})
        return streams

    def _classify(self, request: ImportRequest) -> tuple[list[CanonicalRecord], list[SkipRecord]]:
        classifier = RowClassifier(self._settings, source_id=request.source_id)
        accepted: list[tuple[CanonicalRecord, dict[str, Any]]] = []
        skips: list[SkipRecord] = []

        for source, rows in self._open_sources(request):
            for source_row, row in enumerate(rows, start=1):
                result = classifier.classify(request.kind, row, source_row)
                if result.record is not None:
                    accepted.append((result.record, row))
                    continue
                skips.append(result.skip)
                logger.info(
                    "row_skipped",
                    extra={
                        "source_file": source.name,
                        "source_row": source_row,
                        "category": result.skip.category.value,
                        "reason": result.skip.reason,
                    },
                )

        records, superseded = supersede_duplicates(accepted)
        for skip in superseded:
            logger.info(
                "row_skipped",
                extra={
                    "source_row": skip.source_row,
                    "category": skip.category.value,
                    "reason": skip.reason,
                },
            )
        skips.extend(superseded)

        logger.info(
            "rows_classified",
            extra={"accepted": len(records), "skipped": len(skips)},
        )
        return records, skips

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def preview(self, request: ImportRequest) -> ImportPreview:
        """Classify the request's rows without writing anything."""
        with LogContext.bind(source=request.source_label, kind=request.kind.value):
            records, skips = self._classify(request)
        return ImportPreview(records=tuple(records), skips=tuple(skips))

    def run_import(
        self,
        request: ImportRequest,
        should_continue: Callable[[], bool] | None = None,
    ) -> ImportReport:
        """
        Import every source of ``request`` under one new batch id.

        Exactly one ledger row is written per run that gets past reading,
        whether the write phase completed, stopped part-way or failed on the
        first chunk.
        """
        if not request.sources:
            raise ValueError("ImportRequest has no sources")

        batch_id = uuid4()
        started_at = self._clock.now()

        with LogContext.bind(
            batch_id=str(batch_id),
            source=request.source_label,
            kind=request.kind.value,
        ):
            logger.info(
                "import_started",
                extra={"files": [s.name for s in request.sources]},
            )
            records, skips = self._classify(request)

            session = self._store.session()
            try:
                writer = BatchWriter(
                    session,
                    chunk_size=self._settings.chunk_size,
                    resolver=ReferenceResolver(session),
                )
                result = writer.write(batch_id, records, should_continue=should_continue)
                status = _status(result)
                BatchLedger(session).record(
                    ImportBatch(
                        batch_id=batch_id,
                        source=request.source_label,
                        kind=request.kind,
                        original_filenames=", ".join(s.name for s in request.sources),
                        status=status,
                        success_count=result.rows_written,
                        skipped_count=len(skips),
                        total_amount=result.total_amount,
                        error_message=result.failure.message if result.failure else None,
                        created_at=started_at,
                        completed_at=self._clock.now(),
                    )
                )
                session.commit()
            except Exception:
                session.rollback()
                logger.exception("import_aborted")
                raise
            finally:
                session.close()

            report = ImportReport(
                batch_id=batch_id,
                status=status,
                attempted=len(records) + len(skips),
                imported=result.rows_written,
                skipped=len(skips),
                skips=tuple(skips),
                total_amount=result.total_amount,
                failure=result.failure,
            )
            log = logger.info if result.failure is None else logger.warning
            log(
                "import_completed",
                extra={
                    "status": status.value,
                    "attempted": report.attempted,
                    "imported": report.imported,
                    "skipped": report.skipped,
                    "unwritten": report.unwritten,
                },
            )
        return report

    def rollback(self, batch_id: UUID | str) -> RollbackResult:
        """Delete every record of the batch and its ledger row (idempotent)."""
        batch_id = _as_uuid(batch_id)
        with LogContext.bind(batch_id=str(batch_id)):
            with self._store.session_scope() as session:
                return BatchLedger(session).rollback(batch_id)

    def list_batches(
        self,
        source: str | None = None,
        kind: RecordKind | None = None,
        limit: int = 100,
    ) -> list[ImportBatch]:
        with self._store.session_scope() as session:
            return BatchLedger(session).list_batches(source=source, kind=kind, limit=limit)

    def get_batch(self, batch_id: UUID | str) -> ImportBatch:
        with self._store.session_scope() as session:
            return BatchLedger(session).get(_as_uuid(batch_id))

    def records_for(self, batch_id: UUID | str) -> list[CanonicalRecord]:
        with self._store.session_scope() as session:
            return BatchLedger(session).records_for(_as_uuid(batch_id))
