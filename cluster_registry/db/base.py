"""Database base configuration and session management.

This module provides the SQLAlchemy engine, session factory, declarative base
and the unit-of-work helper every service write goes through. SQLite is the
default backend; PostgreSQL is selected by setting CLUSTER_REGISTRY_DATABASE_URL.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from cluster_registry.config import settings
from cluster_registry.core.exceptions import translate_database_error

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, echo: bool = False, statement_timeout_ms: int = 30000) -> Engine:
    """Create an engine with a statement timeout for the given backend.

    SQLite requires StaticPool for thread-safe operations and only supports a
    lock wait timeout; PostgreSQL gets a server-side statement_timeout.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": statement_timeout_ms / 1000},
            poolclass=StaticPool,
            echo=echo,
        )
        enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        database_url,
        connect_args={"options": f"-c statement_timeout={statement_timeout_ms}"},
        pool_pre_ping=True,
        echo=echo,
    )


engine = build_engine(
    settings.DATABASE_URL,
    echo=settings.SQL_ECHO,
    statement_timeout_ms=settings.STATEMENT_TIMEOUT_MS,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Yield a database session and close it afterwards.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Generator[Session, None, None]:
    """Run a block of writes as one atomic unit.

    Commits when the block completes. On any exception the session is rolled
    back, database constraint failures are translated into registry errors,
    and the error is re-raised, so callers never observe partial writes.

    Usage:
        with unit_of_work(db):
            db.add(cluster)
            db.flush()
    """
    try:
        yield db
        db.commit()
    except sa_exc.IntegrityError as exc:
        db.rollback()
        logger.warning(f"Database rejected write: {exc.orig}")
        raise translate_database_error(exc) from exc
    except Exception:
        db.rollback()
        raise
