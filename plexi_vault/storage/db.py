"""
Database engine and session management.

PostgreSQL in production; SQLite is accepted for local development and tests.
"""
import os
from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError as SAOperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import Pool, StaticPool

from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)
_pool_logger = get_logger("db.pool")

# Base class for ORM models
Base = declarative_base()


class Database:
    """Database engine and session manager."""

    def __init__(self, database_url: str):
        """
        Initialize database connection.

        Args:
            database_url: postgresql:// or sqlite:// connection string
        """
        if not database_url.startswith(("postgresql", "sqlite")):
            raise ValueError(
                f"Unsupported database URL: {database_url[:30]}... "
                "Set DATABASE_URL to a postgresql:// or sqlite:// connection string."
            )

        self.database_url = database_url

        if database_url.startswith("sqlite"):
            engine_kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                # One shared connection so every thread sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool
            else:
                _ensure_sqlite_parent_dir(database_url)
            self.engine = create_engine(database_url, echo=False, **engine_kwargs)
        else:
            self.engine = create_engine(
                database_url,
                echo=False,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
                pool_recycle=3600,
                pool_timeout=30,
            )
            _register_pool_events(self.engine.pool)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        """Create all tables."""
        # Import models so Base.metadata knows every table
        import plexi_vault.storage.repository  # noqa: F401

        try:
            Base.metadata.create_all(bind=self.engine)
        except SAOperationalError as e:
            if "already exists" in str(e).lower():
                logger.debug("Tables already exist", error=str(e))
                return
            raise

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions. Commits on success, rolls back on error.

        Example:
            with db.get_session() as session:
                session.add(obj)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _ensure_sqlite_parent_dir(database_url: str) -> None:
    path = database_url.split("///", 1)[-1]
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def init_db(database_url: str) -> Database:
    """
    Open the database at ``database_url`` and create tables.

    Args:
        database_url: Connection string
    """
    db = Database(database_url)
    db.create_all()
    logger.info("DATABASE_INITIALIZED", dialect=db.engine.dialect.name)
    return db


def _register_pool_events(pool: Pool) -> None:
    """Attach pool listeners: POOL_CHECKOUT (debug) and POOL_INVALIDATE (warning)."""

    @event.listens_for(pool, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy):
        _pool_logger.debug(
            "POOL_CHECKOUT",
            pool_size=pool.size(),
            checked_out=pool.checkedout(),
            overflow=pool.overflow(),
        )

    @event.listens_for(pool, "invalidate")
    def _on_invalidate(dbapi_connection, connection_record, exception):
        _pool_logger.warning(
            "POOL_INVALIDATE",
            error=str(exception) if exception else None,
        )
