"""
Charity Kernel - shared infrastructure for the batch import engine.

Provides:
- Store handle (SQLAlchemy engine + session factory)
- Declarative ORM base with UUID keys and Numeric(38, 9) amounts
- Structured JSON logging with import-scoped context
- Typed exception hierarchy
- Injectable clock
"""

__version__ = "0.1.0"
