"""Import services: reference resolution, chunked writing, ledger, orchestration."""

from charity_ingestion.services.batch_ledger import BatchLedger
from charity_ingestion.services.batch_writer import BatchWriter, WriteResult, plan_chunks
from charity_ingestion.services.import_service import ImportService
from charity_ingestion.services.reference_resolver import ReferenceResolver

__all__ = [
    "BatchLedger",
    "BatchWriter",
    "ImportService",
    "ReferenceResolver",
    "WriteResult",
    "plan_chunks",
]
