"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages the SQLAlchemy engine and sessions for the supervisor.

- Builds an engine from a database URL (SQLite by default)
- Provides session / transaction context managers
- Creates the schema
- Connectivity check and optimisation (VACUUM / ANALYZE)

============================================================
DESIGN PRINCIPLES
============================================================
- Synchronous sessions; async callers go through MonitoringStore
- Explicit transaction boundaries
- Hard failures on persistence errors (callers decide policy)

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models import Base

logger = logging.getLogger(__name__)


# =============================================================
# DATABASE
# =============================================================


class Database:
    """
    Engine + session factory for one database URL.

    In-memory SQLite (``sqlite://``) uses a single shared connection
    so that every session sees the same schema.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self._url = url
        self._engine = self._create_engine(url, echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        kwargs = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        logger.info(f"Creating database engine for: {url.split('@')[-1]}")
        engine = create_engine(url, **kwargs)

        if url.startswith("sqlite"):
            @event.listens_for(engine, "connect")
            def on_connect(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()
                logger.debug("Database connection established")

        return engine

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def database_path(self) -> Optional[str]:
        """Filesystem path of a file-backed SQLite database, else None."""
        database = self._engine.url.database
        if self._engine.url.get_backend_name() != "sqlite":
            return None
        if not database or database == ":memory:":
            return None
        return database

    # =========================================================
    # SESSION MANAGEMENT
    # =========================================================

    def get_session(self) -> Session:
        """
        Get a new database session.

        IMPORTANT: Caller is responsible for committing/closing.
        Prefer session_scope() instead.
        """
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for explicit transaction boundaries.

        Commits only if no exception occurs.
        Rolls back on ANY exception.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error, rolling back: {e}")
            session.rollback()
            raise
        except Exception as e:
            logger.error(f"Unexpected error, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================
    # SCHEMA & MAINTENANCE
    # =========================================================

    def create_all_tables(self) -> None:
        """Create every monitoring table if missing."""
        Base.metadata.create_all(self._engine)
        logger.info(f"Database schema ready ({len(Base.metadata.tables)} tables)")

    def ping(self) -> bool:
        """Run ``SELECT 1``. Raises on failure."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def optimize(self) -> None:
        """VACUUM and ANALYZE (SQLite) or ANALYZE elsewhere."""
        backend = self._engine.url.get_backend_name()
        with self._engine.connect() as conn:
            conn = conn.execution_options(isolation_level="AUTOCOMMIT")
            if backend == "sqlite":
                conn.execute(text("VACUUM"))
            conn.execute(text("ANALYZE"))
        logger.info("Database optimised")

    def dispose(self) -> None:
        self._engine.dispose()
