# estatecrm/db.py
# Database layer: SQLAlchemy engine, sessions and transaction scope.
# PostgreSQL in production, SQLite for local dev and tests.

import logging
from contextlib import contextmanager
from typing import Generator
from urllib.parse import urlparse

from sqlalchemy import create_engine, event, pool
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from estatecrm.config import (
    DATABASE_URL,
    DB_ECHO,
    DB_MAX_OVERFLOW,
    DB_POOL_SIZE,
    IS_POSTGRES,
    IS_SQLITE,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    """Build the engine for DATABASE_URL (pooled for Postgres, file/memory for SQLite)."""
    if IS_POSTGRES:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid DATABASE_URL: {url[:20]}...")

        engine = create_engine(
            url,
            poolclass=pool.QueuePool,
            pool_size=DB_POOL_SIZE,
            max_overflow=DB_MAX_OVERFLOW,
            pool_pre_ping=True,  # Verify connections before use
            echo=DB_ECHO,
        )
        logger.info(f"[DB] Using PostgreSQL ({parsed.hostname})")
        return engine

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if IS_SQLITE else {},
        echo=DB_ECHO,
    )

    if IS_SQLITE:
        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        logger.info("[DB] Using SQLite (local dev mode)")

    return engine


engine = create_db_engine()
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    """Create all tables (idempotent)."""
    # Import models so they register on Base.metadata
    from estatecrm import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("[DB] Schema ensured")


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Unit of work for a mutation.

    Everything executed inside the block is committed together; any exception
    rolls the whole unit back and is re-raised. Multi-step mutations (an entity
    plus its dependent rows) must run inside a single block.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
