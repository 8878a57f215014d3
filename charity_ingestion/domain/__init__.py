"""
charity_ingestion.domain -- Pure types, normalizers and the row classifier.

ZERO I/O.
"""

from charity_ingestion.domain.classifier import ClassifiedRow, RowClassifier
from charity_ingestion.domain.types import (
    CanonicalRecord,
    DistributionActPayload,
    DonationPayload,
    ImportBatch,
    ImportBatchStatus,
    ImportPreview,
    ImportReport,
    ImportRequest,
    LineItem,
    PropertyActPayload,
    RecordKind,
    RollbackResult,
    SkipCategory,
    SkipRecord,
    SourceFile,
    SourceFormat,
    WriteFailure,
)

__all__ = [
    "CanonicalRecord",
    "ClassifiedRow",
    "DistributionActPayload",
    "DonationPayload",
    "ImportBatch",
    "ImportBatchStatus",
    "ImportPreview",
    "ImportReport",
    "ImportRequest",
    "LineItem",
    "PropertyActPayload",
    "RecordKind",
    "RollbackResult",
    "RowClassifier",
    "SkipCategory",
    "SkipRecord",
    "SourceFile",
    "SourceFormat",
    "WriteFailure",
]
