"""
Database connection and session management for the Cafe Cost Engine.

This module provides:
- Database engine creation and configuration
- Session factory for database operations
- Database initialization (create tables)
- WAL mode configuration
- Foreign key enforcement
"""

from typing import Optional
from contextlib import contextmanager
import logging

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..utils.config import get_config
from ..models.base import Base

logger = logging.getLogger(__name__)

# Tables whose presence means the catalog schema is in place
EXPECTED_TABLES = ("products", "materials", "recipe_lines")

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Set SQLite pragmas on every new connection.

    Foreign keys must be on for the RESTRICT/CASCADE rules on recipe lines.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _register_models() -> None:
    """Import every model module so Base.metadata knows all tables."""
    from ..models import (  # noqa: F401
        material,
        material_price_history,
        product,
        recipe_line,
        inventory_consumption,
        purchase_order,
        purchase_order_item,
    )


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create and configure the database engine.

    Args:
        database_url: Optional database URL. If None, uses config default.
        echo: If True, log all SQL statements

    Returns:
        Configured SQLAlchemy Engine
    """
    if database_url is None:
        database_url = get_config().database_url

    logger.info(f"Creating database engine: {database_url}")

    if ":memory:" in database_url or "mode=memory" in database_url:
        # One shared connection, otherwise each session sees an empty database
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Create all tables that don't exist yet.

    Safe to call on every start-up.

    Args:
        engine: Optional engine to use. If None, uses global engine.
    """
    if engine is None:
        engine = get_engine()

    logger.info("Initializing database tables")
    _register_models()
    Base.metadata.create_all(engine)
    logger.info("Database tables initialized successfully")


def get_engine(force_recreate: bool = False) -> Engine:
    """
    Get the global database engine (singleton).

    Args:
        force_recreate: If True, recreate the engine even if one exists
    """
    global _engine

    if _engine is None or force_recreate:
        _engine = create_database_engine()

    return _engine


def get_session_factory() -> sessionmaker:
    """Get the global session factory."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)

    return _SessionFactory


def get_session() -> Session:
    """
    Create a new database session.

    Prefer session_scope(); callers using this directly own commit,
    rollback and close.
    """
    session_factory = get_session_factory()
    return session_factory()


@contextmanager
def session_scope():
    """
    Provide a transactional scope for database operations.

    Commits on success, rolls back on exception, always closes.

    Example:
        with session_scope() as session:
            consumption_service.record_order("1042", items, session=session)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def database_exists() -> bool:
    """Check if the configured database file exists."""
    return get_config().database_exists()


def verify_database() -> bool:
    """
    Verify that the database is reachable and has the catalog tables.

    Returns:
        True if database is valid, False otherwise
    """
    try:
        tables = inspect(get_engine()).get_table_names()
    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        return False

    missing = [table for table in EXPECTED_TABLES if table not in tables]
    if missing:
        logger.warning(f"Database is missing tables: {', '.join(missing)}")
        return False
    return True


def reset_database(confirm: bool = False) -> None:
    """
    Drop all tables and recreate the database.

    WARNING: This deletes the catalog and the consumption audit trail.

    Args:
        confirm: Must be True to actually reset.

    Raises:
        ValueError: If confirm is not True
    """
    if not confirm:
        raise ValueError("Must pass confirm=True to reset database. This will delete all data!")

    logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST")

    engine = get_engine()
    _register_models()

    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")

    Base.metadata.create_all(engine)
    logger.info("Tables recreated")


def close_connections() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionFactory

    _SessionFactory = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    logger.info("Database connections closed")


def initialize_app_database() -> None:
    """
    Initialize the application database.

    Main entry point at process start: creates the database file and tables
    if they don't exist.
    """
    config = get_config()

    if config.database_path is None:
        logger.info(f"Using database at: {config.database_url}")
    elif not config.database_exists():
        logger.info(f"Creating new database at: {config.database_path}")
    else:
        logger.info(f"Using existing database at: {config.database_path}")

    init_database(get_engine())

    if verify_database():
        logger.info("Database initialized and verified successfully")
    else:
        logger.warning("Database verification failed - tables may not exist")
