"""
Module: fulfillment_kernel.db.engine
Responsibility: Build engines, hold the process-wide engine / session
    factory, and provide ``session_scope`` for the layers that own
    transactions (the Fulfillment Service and the bulk coordinator).
Architecture position: Kernel > DB.  Imports only db/base.py and, lazily,
    models/ so that ``create_tables`` sees every table.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; per-entity writes take row locks
      through ``BaseService._locked_get``.
    - SQLite (tests, local use) ignores FOR UPDATE, so the version counters
      on Part and InventoryItem are what detect a lost update there.
      Foreign keys are switched on for every SQLite connection.
    - Sessions are created with expire_on_commit=False; DTOs are built from
      committed objects without a reload.

Failure modes:
    - RuntimeError from the accessors before ``init_engine_from_url``.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create an engine for ``database_url`` without registering it globally.

    Pool settings apply to PostgreSQL only.  For SQLite the connection is
    shareable across threads and writers wait ``sqlite_busy_timeout``
    seconds for the file lock instead of failing at once.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": sqlite_busy_timeout},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, **engine_options) -> Engine:
    """
    Build the process-wide engine and session factory.

    ``engine_options`` are passed to ``build_engine``.  Calling again
    disposes the previous engine first.
    """
    global _engine, _SessionFactory

    reset_engine()
    _engine = build_engine(database_url, **engine_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": engine_options.get("pool_size"),
            "echo": engine_options.get("echo", False),
        },
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to services; bulk workers each open their own session."""
    return _require_factory()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, roll back and re-raise on error.

    The session is always closed.  Uses the global factory when none is
    given.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create any missing part / inventory tables."""
    from fulfillment_kernel.db.base import Base
    import fulfillment_kernel.models  # noqa: F401  (registers tables)

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every table, ledger included.  Local databases and tests only."""
    from fulfillment_kernel.db.base import Base
    import fulfillment_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the global engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
