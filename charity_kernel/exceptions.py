"""
Typed exception hierarchy for the charity import engine.

Every exception carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and read structured data
instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CharityImportError (base)
    |
    +-- SourceError
    |   +-- ContainerError
    |   +-- UnsupportedFormatError
    |
    +-- ResolutionError
    |   +-- ReferenceResolutionError
    |
    +-- BatchError
    |   +-- ChunkWriteError
    |   +-- BatchNotFoundError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Source          | UNREADABLE_CONTAINER        | Workbook / archive / JSON cannot be read
                | UNSUPPORTED_FORMAT          | No adapter for the declared/sniffed format
----------------|-----------------------------|-----------------------------------------
Resolution      | REFERENCE_RESOLUTION_FAILED | Insert conflicted but re-fetch found nothing
----------------|-----------------------------|-----------------------------------------
Batch           | CHUNK_WRITE_FAILED          | A chunk insert failed; batch is partial
                | BATCH_NOT_FOUND             | Ledger has no row for the batch id
----------------|-----------------------------|-----------------------------------------
Config          | INVALID_CONFIGURATION       | Settings file has invalid values

===============================================================================
HANDLING PATTERNS
===============================================================================

Row-level problems (unparseable date, empty amount, excluded purpose) are NOT
exceptions. They become SkipRecord entries on the import report. Exceptions
are reserved for conditions that stop an import:

    try:
        report = service.run_import(request)
        report.raise_for_failure()
    except ContainerError as e:
        show(f"{e.filename}: {e.reason}")        # nothing was written
    except ChunkWriteError as e:
        offer_rollback(e.batch_id, e.rows_written)
"""

from uuid import UUID


class CharityImportError(Exception):
    """
    Base exception for all import engine errors.

    All subclasses must have a `code` class attribute.
    """

    code: str = "CHARITY_IMPORT_ERROR"


# Source / container errors


class SourceError(CharityImportError):
    """Base exception for problems with a source file as a whole."""

    code: str = "SOURCE_ERROR"


class ContainerError(SourceError):
    """The file container could not be read. Fatal before any row is processed."""

    code: str = "UNREADABLE_CONTAINER"

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Cannot read {filename}: {reason}")


class UnsupportedFormatError(SourceError):
    """No adapter is registered for the format."""

    code: str = "UNSUPPORTED_FORMAT"

    def __init__(self, source_format: str, filename: str | None = None):
        self.source_format = source_format
        self.filename = filename
        where = f" ({filename})" if filename else ""
        super().__init__(f"Unsupported source format {source_format!r}{where}")


# Reference resolution


class ResolutionError(CharityImportError):
    """Base exception for reference-entity resolution."""

    code: str = "RESOLUTION_ERROR"


class ReferenceResolutionError(ResolutionError):
    """
    Insert of a reference entity conflicted, yet the re-fetch found no row.

    Only possible if the conflicting row was deleted between the two steps.
    """

    code: str = "REFERENCE_RESOLUTION_FAILED"

    def __init__(self, entity_kind: str, natural_key: str):
        self.entity_kind = entity_kind
        self.natural_key = natural_key
        super().__init__(
            f"Could not resolve {entity_kind} {natural_key!r} after insert conflict"
        )


# Batch errors


class BatchError(CharityImportError):
    """Base exception for batch write / ledger errors."""

    code: str = "BATCH_ERROR"


class ChunkWriteError(BatchError):
    """
    A chunk insert failed. Earlier chunks stay written.

    The batch is left partially written for manual rollback.
    """

    code: str = "CHUNK_WRITE_FAILED"

    def __init__(
        self,
        batch_id: UUID,
        chunk_index: int,
        rows_written: int,
        reason: str,
    ):
        self.batch_id = batch_id
        self.chunk_index = chunk_index
        self.rows_written = rows_written
        self.reason = reason
        super().__init__(
            f"Batch {batch_id}: chunk {chunk_index} failed after "
            f"{rows_written} row(s) written: {reason}"
        )


class BatchNotFoundError(BatchError):
    """The ledger has no summary row for the batch id."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: UUID | str):
        self.batch_id = batch_id
        super().__init__(f"Import batch not found: {batch_id}")


# Configuration


class ConfigurationError(CharityImportError):
    """Settings contain an invalid value."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Invalid setting {key!r}: {message}")
