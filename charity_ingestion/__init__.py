"""
charity_ingestion -- Batch import and reconciliation of charity records.

Parses bank-statement spreadsheets, zipped CSV exports and accounting JSON
dumps into canonical donation and act records, writes them in chunks under a
batch id, and keeps a ledger of batches that can be rolled back.

Architecture:
    adapters/  bytes -> raw rows (no DB)
    domain/    normalizers and classifier (ZERO I/O)
    models/    SQLAlchemy tables
    services/  resolver, writer, ledger, orchestration
"""
