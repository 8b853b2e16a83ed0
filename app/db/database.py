"""
Database Manager
================
Connection and session management for the optional database history backend.

Reachability Signal:
    is_ready() is the single "database reachable" flag consulted by the
    history store before every write and read. It is False when:
        - DATABASE_URL is unset or DISABLE_DB is set
        - connect() failed at startup
        - a later operation hit a connection-level error (mark_unavailable)
    Once False the service keeps running on the file-backed store.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the SQLAlchemy engine and the reachability flag.

    Usage:
        db = DatabaseManager("sqlite:///history.db")
        db.connect()
        if db.is_ready():
            with db.get_session() as session:
                ...
        db.dispose()
    """

    def __init__(self, url: Optional[str], disabled: bool = False, connect_timeout: int = 5) -> None:
        self.url = url
        self.disabled = disabled
        self.connect_timeout = connect_timeout
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._ready = False

    @property
    def enabled(self) -> bool:
        return bool(self.url) and not self.disabled

    def connect(self) -> bool:
        """Create the engine, ensure tables exist and verify with SELECT 1."""
        if not self.enabled:
            logger.info(
                "Database %s; using file history store.",
                "disabled" if self.disabled else "URL not set",
            )
            return False

        try:
            if self.url.startswith("sqlite"):
                # Writes run in worker threads
                self._engine = create_engine(
                    self.url, connect_args={"check_same_thread": False}
                )
            else:
                self._engine = create_engine(
                    self.url,
                    pool_pre_ping=True,
                    pool_timeout=self.connect_timeout,
                )
            Base.metadata.create_all(self._engine)
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Database error: %s", e)
            logger.warning("Continuing without database. Set DISABLE_DB=1 to silence this.")
            self._ready = False
            return False

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._ready = True
        logger.info("Database connected")
        return True

    def is_ready(self) -> bool:
        return self._ready and self._session_factory is not None

    def mark_unavailable(self, reason: str = "") -> None:
        if self._ready:
            logger.warning("Database marked unavailable%s", f": {reason}" if reason else "")
        self._ready = False

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Transactional session: commit on success, rollback on error."""
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self._ready = False
