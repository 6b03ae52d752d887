"""
Database engine and sessions.

PostgreSQL in deployment (pooled, pre-pinged connections); SQLite when
DATABASE_URL points at it, which the test suite does. Request handlers get a
session from get_db(), which commits on success and rolls back on any
exception.

Services use SAVEPOINTs (db.begin_nested()) to isolate best-effort writes.
pysqlite's own transaction handling breaks SAVEPOINT, so for SQLite the
driver is put in autocommit mode and SQLAlchemy emits BEGIN itself.
"""
import logging
import time
from typing import Iterator

from fastapi import HTTPException
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL or (
    f"postgresql://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}"
    f"@{settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}/{settings.POSTGRES_DB}"
)
_IS_SQLITE = DATABASE_URL.startswith("sqlite")

CONNECT_ATTEMPTS = 3


if _IS_SQLITE:
    # One shared connection, so an in-memory database outlives each session.
    engine = create_engine(
        DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=settings.DEBUG,
    )

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")
else:
    engine = create_engine(
        DATABASE_URL,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def _open_session() -> Session:
    """A session whose connection answered SELECT 1, with short backoff between tries."""
    attempt = 1
    while True:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return db
        except Exception as e:
            db.close()
            if attempt >= CONNECT_ATTEMPTS:
                logger.error(f"Database unavailable after {CONNECT_ATTEMPTS} attempts: {e}")
                raise
            logger.warning(f"Database connect attempt {attempt} failed, retrying")
            time.sleep(0.1 * 2 ** (attempt - 1))
            attempt += 1


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, committed when the handler returns."""
    db = _open_session()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        if not isinstance(e, HTTPException):
            logger.error(f"Request transaction rolled back: {e}")
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
