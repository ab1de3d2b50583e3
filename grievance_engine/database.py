import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings
from .errors import GrievanceEngineError, storage_unavailable, write_conflict

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base with proper typing."""

    pass


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite gets a generous lock timeout and foreign keys switched on, other
    backends get the pooled configuration from settings.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create every table known to the models (idempotent)."""
    from . import models  # noqa: F401  registers mappers on Base.metadata

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def unit_of_work(session_factory: sessionmaker, db: Session | None = None) -> Iterator[Session]:
    """
    Transaction boundary shared by every component.

    If ``db`` is given the caller owns the transaction: the block runs inside
    it and nothing is committed here. Otherwise a fresh session is opened,
    committed on success, rolled back on failure and always closed.

    Integrity violations become ConflictError, other driver failures become
    StorageError. Engine errors pass through untouched.
    """
    if db is not None:
        yield db
        return

    session = session_factory()
    try:
        yield session
        session.commit()
    except GrievanceEngineError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        raise write_conflict(str(e.orig)) from e
    except DBAPIError as e:
        session.rollback()
        logger.error("Database failure: %s", e.orig)
        raise storage_unavailable(str(e.orig)) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
