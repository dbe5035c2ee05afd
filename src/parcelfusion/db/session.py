"""
Database Session Management

Engine construction and session scoping for the SQLite feature cache.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, exc, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import settings
from src.parcelfusion.exceptions import ParcelFusionError
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create the cache engine.

    File databases get their parent directory created. In-memory databases
    share one connection so every session sees the same tables.

    Args:
        database_url: SQLAlchemy URL (default: settings.cache_database_url)
        echo: Log SQL statements (default: settings.database_echo)

    Returns:
        SQLAlchemy Engine
    """
    url = make_url(database_url or settings.cache_database_url)
    kwargs = {"echo": settings.database_echo if echo is None else echo}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.cache_busy_timeout_seconds,
        }
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        """Log new connections; SQLite gets WAL so readers do not block the writer."""
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()
        logger.debug("database_connection_established", backend=url.get_backend_name())

    logger.info("database_engine_created", backend=url.get_backend_name(), database=url.database)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Get database session with automatic commit / rollback.

    Usage:
        with get_db_session(factory) as session:
            session.add(row)

    Yields:
        Database session

    Raises:
        Exception: Re-raises any exception after rollback
    """
    session = session_factory()
    try:
        yield session
        session.commit()
        logger.debug("database_session_committed")
    except exc.SQLAlchemyError as e:
        session.rollback()
        logger.error(
            "database_session_rollback",
            error=str(e),
            error_type=type(e).__name__
        )
        raise
    except ParcelFusionError as e:
        # Pipeline control flow (stops, record and fetch errors); the caller logs it
        session.rollback()
        logger.info("database_session_rolled_back", reason=type(e).__name__)
        raise
    except Exception as e:
        session.rollback()
        logger.error(
            "database_session_error",
            error=str(e),
            error_type=type(e).__name__
        )
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    """Create the cache tables if they do not exist."""
    from src.parcelfusion.db.base import Base, import_all_models

    import_all_models()
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_created")


def health_check(engine: Engine) -> bool:
    """
    Check database connection health.

    Returns:
        True if database is accessible, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("database_health_check_success")
        return True
    except exc.SQLAlchemyError as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        return False
