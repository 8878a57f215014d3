"""
Module: charity_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities, bundled into an explicit ``Store``
    handle that callers construct once and pass to every component.
Architecture position: Kernel > DB.  May import from db/base.py.

Invariants enforced:
    - No module-level engine singleton: each Store owns its engine and
      session factory, so two stores (e.g. two test databases) never share
      state.
    - PostgreSQL sessions run at READ COMMITTED with a pre-pinged QueuePool.
      SQLite (tests, local runs) gets foreign keys switched on per connection
      so ON DELETE CASCADE is honoured, and explicit BEGIN so the
      resolver's SAVEPOINTs work.

Failure modes:
    - OperationalError / ArgumentError from SQLAlchemy on a bad URL surface at
      first connect; they are not wrapped.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from charity_kernel.logging_config import get_logger

logger = get_logger("db.engine")


@dataclass(frozen=True)
class StoreConfig:
    """Connection settings for a Store."""

    database_url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # SQLAlchemy, not pysqlite, emits BEGIN so SAVEPOINT nests correctly.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def _build_engine(config: StoreConfig) -> Engine:
    if config.database_url.startswith("postgresql"):
        return create_engine(
            config.database_url,
            echo=config.echo,
            poolclass=QueuePool,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_pre_ping=True,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            isolation_level="READ COMMITTED",
        )
    engine = create_engine(config.database_url, echo=config.echo)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
    return engine


class Store:
    """
    Handle to the relational store: one engine plus its session factory.

    Usage:
        store = Store.from_url("sqlite:///imports.db")
        store.create_tables()
        with store.session_scope() as session:
            ...
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.engine = _build_engine(config)
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine, expire_on_commit=False
        )
        logger.info(
            "store_initialized",
            extra={"dialect": self.engine.dialect.name, "echo": config.echo},
        )

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> Store:
        return cls(StoreConfig(database_url=database_url, echo=echo))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def session(self) -> Session:
        """Get a new session. The caller owns commit/rollback/close."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Commits on normal exit; rolls back and re-raises on exception;
        always closes the session.
        """
        session = self.session()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all import-engine tables (no-op for tables that exist)."""
        from charity_kernel.db.base import Base

        # Registers the ingestion tables on Base.metadata.
        import charity_ingestion.models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from charity_kernel.db.base import Base

        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()
