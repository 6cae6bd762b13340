"""Database connection management."""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Protocol

from sqlalchemy import event, create_engine, Engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class DatabaseSettings(Protocol):
    """Protocol for database settings."""

    database_url: str
    db_pool_size: int
    db_pool_overflow: int
    log_level: str


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, settings: DatabaseSettings):
        self.settings = settings
        self.engine: Engine | None = None
        self.session_factory: sessionmaker[Session] | None = None

    def initialize(self, create_schema: bool = False) -> None:
        """Initialize the database connection.

        The catalog tables belong to the catalog management side; they are
        only created here when ``create_schema`` is set (tests, local setups).
        """
        logger.info(f"Connecting to database: {self._get_log_safe_url()}")

        self.engine = create_engine(
            self.settings.database_url,
            echo=self.settings.log_level == "DEBUG",  # Log SQL queries in debug mode
            **self._engine_options(),
        )

        @event.listens_for(self.engine, "connect")
        def receive_connect(dbapi_connection, connection_record):
            logger.debug("Database connection established")

        self.session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )

        if create_schema:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified")

    def _engine_options(self) -> dict[str, Any]:
        url = self.settings.database_url
        if url.startswith("sqlite"):
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or every session sees an empty database.
                return {
                    "poolclass": StaticPool,
                    "connect_args": {"check_same_thread": False},
                }
            return {"connect_args": {"check_same_thread": False}}

        return {
            "pool_size": self.settings.db_pool_size,
            "max_overflow": self.settings.db_pool_overflow,
            "pool_pre_ping": True,  # Verify connections before use
        }

    def close(self) -> None:
        """Close the database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connections closed")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic cleanup."""
        if not self.session_factory:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        else:
            session.commit()
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if the database connection is healthy."""
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def _get_log_safe_url(self) -> str:
        """Get database URL with password masked for logging."""
        url = self.settings.database_url
        if "@" in url and "://" in url:
            scheme, rest = url.split("://", 1)
            if "@" in rest:
                credentials, host_part = rest.split("@", 1)
                if ":" in credentials:
                    user, _ = credentials.split(":", 1)
                    return f"{scheme}://{user}:***@{host_part}"
                else:
                    return f"{scheme}://{credentials}:***@{host_part}"
        return url


# Global database manager instance
_db_manager: DatabaseManager | None = None


def get_database_manager(settings: DatabaseSettings | None = None) -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        if settings is None:
            raise RuntimeError("Database settings must be provided")
        _db_manager = DatabaseManager(settings)
    return _db_manager


def init_database(settings: DatabaseSettings) -> DatabaseManager:
    """Initialize the database and return the manager."""
    db_manager = get_database_manager(settings)
    if db_manager.engine is None:
        db_manager.initialize()
    return db_manager


def close_database() -> None:
    """Close the database connection."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
