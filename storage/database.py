"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions for the device data
store.

- Builds the engine with connection pooling
- Hands out sessions and transaction scopes
- Creates tables and indexes
- Verifies connectivity

============================================================
DESIGN PRINCIPLES
============================================================
- No module-level engine: a Database object is created once
  and passed to whoever needs sessions
- Hard failures on connection and schema errors
- PostgreSQL in production, SQLite for tests

============================================================
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models import Base


logger = logging.getLogger(__name__)


REQUIRED_TABLES = [
    "deviceDataSets",
    "deviceData",
]


# =============================================================
# CONFIGURATION
# =============================================================

@dataclass
class DatabaseConfig:
    """Connection settings for the device data store."""

    url: str
    """SQLAlchemy database URL."""

    pool_size: int = 10
    """Number of connections to keep in pool."""

    max_overflow: int = 20
    """Max connections beyond pool_size."""

    pool_timeout: int = 30
    """Seconds to wait for an available connection."""

    pool_recycle: int = 1800
    """Recycle connections after N seconds."""

    echo: bool = False
    """Log SQL statements."""

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def safe_url(self) -> str:
        """URL without credentials, for logging."""
        return self.url.split("@")[-1]


def _parse_int(value: Optional[str], default: int) -> int:
    """Parse integer from environment variable."""
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer {value!r} in environment, using {default}")
        return default


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_database_config() -> DatabaseConfig:
    """
    Load database configuration from the environment.

    DEVICE_DATA_DATABASE_URL wins over DATABASE_URL.

    Raises:
        DatabaseConfigurationError: If no URL is configured
    """
    load_dotenv(override=False)

    url = os.getenv("DEVICE_DATA_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise DatabaseConfigurationError(
            "DEVICE_DATA_DATABASE_URL or DATABASE_URL is required"
        )
    if url.startswith("postgresql+asyncpg"):
        url = url.replace("postgresql+asyncpg", "postgresql")

    return DatabaseConfig(
        url=url,
        pool_size=_parse_int(os.getenv("DEVICE_DATA_DB_POOL_SIZE"), 10),
        max_overflow=_parse_int(os.getenv("DEVICE_DATA_DB_MAX_OVERFLOW"), 20),
        pool_timeout=_parse_int(os.getenv("DEVICE_DATA_DB_POOL_TIMEOUT"), 30),
        pool_recycle=_parse_int(os.getenv("DEVICE_DATA_DB_POOL_RECYCLE"), 1800),
        echo=_parse_bool(os.getenv("DEVICE_DATA_DB_ECHO"), False),
    )


# =============================================================
# DATABASE
# =============================================================

class Database:
    """
    Engine and session factory for the device data store.

    Usage:
        database = Database(load_database_config())
        database.initialize()
        with database.session_scope() as session:
            ...
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def engine(self) -> Engine:
        """Get the engine, creating it if necessary."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        logger.info(f"Creating database engine for: {self._config.safe_url}")

        if self._config.is_sqlite:
            engine = create_engine(
                self._config.url,
                echo=self._config.echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                self._config.url,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_timeout=self._config.pool_timeout,
                pool_recycle=self._config.pool_recycle,
                pool_pre_ping=True,
                echo=self._config.echo,
            )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        return engine

    def session_factory(self) -> sessionmaker:
        """Get session factory, creating if necessary."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def get_session(self) -> Session:
        """
        Get a new database session.

        IMPORTANT: Caller is responsible for closing.
        Prefer using session_scope() instead.
        """
        return self.session_factory()()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for sessions with automatic cleanup.

        Repositories commit their own requests; anything left
        uncommitted when an exception escapes is rolled back.
        """
        session = self.get_session()
        try:
            yield session
        except Exception as e:
            logger.error(f"Session aborted, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================
    # INITIALIZATION
    # =========================================================

    def verify_connection(self) -> bool:
        """
        Verify the database connection is working.

        Raises:
            DatabaseConnectionError: If connection fails
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e

    def create_all_tables(self) -> None:
        """
        Create device data tables and indexes if missing.

        Raises:
            DatabaseInitializationError: If table creation fails
        """
        try:
            logger.info("Creating device data tables...")
            Base.metadata.create_all(bind=self.engine)
            logger.info("Device data tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create device data tables: {e}")
            raise DatabaseInitializationError(f"Table creation failed: {e}") from e

    def missing_tables(self) -> list:
        """Names of required tables not present in the database."""
        existing = set(inspect(self.engine).get_table_names())
        return [table for table in REQUIRED_TABLES if table not in existing]

    def initialize(self) -> None:
        """
        Full initialization sequence.

        1. Verify connection
        2. Create tables and indexes if not exist
        3. Verify tables exist
        """
        self.verify_connection()
        self.create_all_tables()

        missing = self.missing_tables()
        if missing:
            raise DatabaseInitializationError(f"Tables missing after creation: {missing}")
        logger.info("Device data store initialized")

    def dispose(self) -> None:
        """Release all pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================


class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseConfigurationError(DatabasePersistenceError):
    """Raised when the database is not configured."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


__all__ = [
    "REQUIRED_TABLES",
    "DatabaseConfig",
    "load_database_config",
    "Database",
    "DatabasePersistenceError",
    "DatabaseConfigurationError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
