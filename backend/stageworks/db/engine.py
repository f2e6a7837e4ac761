"""
Database engine configuration.

One process-wide engine, built lazily from ``DATABASE_URL``. SQLite is the
default; any other URL gets a small connection pool.
"""

from pathlib import Path

from sqlalchemy import create_engine, event, make_url, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from stageworks.config import get_settings
from stageworks.core import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def _ensure_sqlite_directory(database_url: str) -> None:
    database = make_url(database_url).database
    if not database or database == ":memory:":
        return
    directory = Path(database).parent
    if not directory.exists():
        directory.mkdir(parents=True, exist_ok=True)
        logger.info("Created database directory", data={"path": str(directory)})


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    # Needed for ON DELETE CASCADE on sessions
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Return the cached engine, creating it on first use."""
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    if settings.is_sqlite:
        _ensure_sqlite_directory(settings.database_url)
        # The lockout store commits per statement; wait out concurrent writers
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=settings.debug,
            pool_pre_ping=True,
        )
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        _engine = create_engine(
            settings.database_url,
            echo=settings.debug,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )

    logger.info(
        "Database engine created",
        data={"dialect": _engine.dialect.name, "debug": settings.debug},
    )
    return _engine


def verify_database_connection() -> bool:
    """Run ``SELECT 1``. False when the database cannot be reached."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Database connection failed", data={"error": exc.__class__.__name__})
        return False
    return True


def dispose_engine() -> None:
    """Dispose of the engine and release all connections."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("Database engine disposed")
