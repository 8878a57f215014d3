"""
Command-line entry point: ``charity-import``.

Usage:
    charity-import run --kind donation --source privatbank statement.xlsx
    charity-import run --kind donation --source mono --format csv_zip export.zip --preview
    charity-import batches [--kind distribution_act] [--source BAS]
    charity-import rollback <batch-id>

Global options (before the subcommand):
    --config PATH        settings YAML (chunk size, currency aliases, rules)
    --database-url URL   overrides settings and CHARITY_IMPORT_DATABASE_URL

Every command prints one JSON document on stdout. Exit codes: 0 success,
1 input/configuration error, 2 import stopped part-way (batch left for
rollback).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

import yaml

from charity_config.loader import load_settings
from charity_kernel.db.engine import Store
from charity_kernel.exceptions import CharityImportError
from charity_kernel.logging_config import configure_logging

from charity_ingestion.domain.types import (
    ImportBatch,
    ImportRequest,
    RecordKind,
    SourceFile,
    SourceFormat,
)
from charity_ingestion.services.import_service import ImportService

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def _batch_to_dict(batch: ImportBatch) -> dict[str, Any]:
    return {
        "batch_id": str(batch.batch_id),
        "source": batch.source,
        "kind": batch.kind.value,
        "original_filenames": batch.original_filenames,
        "status": batch.status.value,
        "success_count": batch.success_count,
        "skipped_count": batch.skipped_count,
        "total_amount": str(batch.total_amount),
        "error_message": batch.error_message,
        "created_at": batch.created_at.isoformat() if batch.created_at else None,
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charity-import",
        description="Import donations and acts from bank / accounting exports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file.")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy database URL.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Import one or more files as one batch.")
    run.add_argument("files", nargs="+", type=Path, help="Source files.")
    run.add_argument(
        "--kind",
        required=True,
        choices=[k.value for k in RecordKind],
        help="Target dataset.",
    )
    run.add_argument("--source", required=True, help="Source label stored on the batch.")
    run.add_argument(
        "--format",
        choices=[f.value for f in SourceFormat],
        default=None,
        help="Container format (default: sniff per file).",
    )
    run.add_argument("--source-id", default=None, help="Donation source reference.")
    run.add_argument("--preview", action="store_true", help="Classify only; write nothing.")

    batches = sub.add_parser("batches", help="List import batches, newest first.")
    batches.add_argument("--kind", choices=[k.value for k in RecordKind], default=None)
    batches.add_argument("--source", default=None)
    batches.add_argument("--limit", type=int, default=50)

    rollback = sub.add_parser("rollback", help="Delete everything a batch wrote.")
    rollback.add_argument("batch_id", help="Batch id (UUID).")

    return parser


def _read_sources(paths: Sequence[Path]) -> tuple[SourceFile, ...]:
    return tuple(SourceFile(name=p.name, content=p.read_bytes()) for p in paths)


def _cmd_run(service: ImportService, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    request = ImportRequest(
        sources=_read_sources(args.files),
        kind=RecordKind(args.kind),
        source_label=args.source,
        source_format=SourceFormat(args.format) if args.format else None,
        source_id=args.source_id,
    )
    if args.preview:
        preview = service.preview(request)
        return EXIT_OK, {
            "attempted": preview.attempted,
            "accepted": len(preview.records),
            "skipped": len(preview.skips),
            "skips": [s.to_dict() for s in preview.skips],
        }
    report = service.run_import(request)
    return (EXIT_OK if report.failure is None else EXIT_PARTIAL), report.to_dict()


def _cmd_batches(service: ImportService, args: argparse.Namespace) -> tuple[int, Any]:
    kind = RecordKind(args.kind) if args.kind else None
    batches = service.list_batches(source=args.source, kind=kind, limit=args.limit)
    return EXIT_OK, [_batch_to_dict(b) for b in batches]


def _cmd_rollback(service: ImportService, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    result = service.rollback(args.batch_id)
    return EXIT_OK, {
        "batch_id": str(result.batch_id),
        "records_deleted": result.records_deleted,
        "line_items_deleted": result.line_items_deleted,
        "batch_deleted": result.batch_deleted,
    }


_COMMANDS = {
    "run": _cmd_run,
    "batches": _cmd_batches,
    "rollback": _cmd_rollback,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        settings = load_settings(args.config)
        if args.database_url:
            settings = replace(settings, database_url=args.database_url)
        store = Store.from_url(settings.database_url)
    except (CharityImportError, OSError, yaml.YAMLError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        store.create_tables()
        service = ImportService(store, settings)
        code, output = _COMMANDS[args.command](service, args)
    except (CharityImportError, OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        store.dispose()

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return code


if __name__ == "__main__":
    sys.exit(main())
