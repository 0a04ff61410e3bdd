"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Engine and session management for report persistence.

- One engine per Database instance (no module globals)
- Session factory with explicit transaction scope
- Table creation for the report models
- SQLite by default, any SQLAlchemy URL accepted
============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models.base import Base
from storage.repositories.exceptions import ConnectionError


logger = logging.getLogger(__name__)


def _safe_url(url: str) -> str:
    return url.split("@")[-1]


class Database:
    """
    Engine + session factory bound to one database URL.

    Usage:
        db = Database("sqlite:///./market.db")
        db.create_all()
        with db.transaction_scope() as session:
            session.add(record)
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._echo = echo

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        logger.info(f"Creating database engine for: {_safe_url(self.url)}")
        if self.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url in ("sqlite://", "sqlite:///"):
                kwargs["poolclass"] = StaticPool
            return create_engine(self.url, echo=self._echo, **kwargs)
        return create_engine(
            self.url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=self._echo,
        )

    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def get_session(self) -> Session:
        """New session; caller commits and closes."""
        return self.session_factory()()

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Commit on success, roll back on any exception and re-raise.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")

    def verify_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise ConnectionError(
                repository_name="database",
                operation="verify_connection",
                original_error=str(e),
            ) from e

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
