"""Database utilities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the engine and session factory for one storage backend.

    The instance is created once at process start, handed to the ledger store
    and the services, and disposed at shutdown.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(url, echo=echo, connect_args=connect_args, future=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        settings.ensure_storage()
        return cls(settings.database_url, echo=settings.echo_sql)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_scope(self) -> Iterator[Session]:
        """Provide a session for read-only work; nothing is committed.

        Closing releases the connection without expiring what was loaded, so
        the returned objects stay readable once detached.
        """

        session: Session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def create_all(self) -> None:
        """Ensure that the database schema exists."""

        from . import immutability, models  # noqa: F401 - ensure models are imported

        immutability.register_immutability_listeners()
        Base.metadata.create_all(bind=self.engine)
        with self.engine.begin() as connection:
            immutability.install_immutability_triggers(connection)
        logger.debug("Schema ready", extra={"database_url": self.url})

    def drop_all(self) -> None:
        from . import models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        """Close every pooled connection."""

        self.engine.dispose()
