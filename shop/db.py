import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, TimeoutError as PoolTimeout
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()

# Failures of the transport, not of the business rules
_UNAVAILABLE = (OperationalError, InterfaceError, DisconnectionError, PoolTimeout)


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in url


class Database:
    """Explicitly constructed handle on the relational store.

    `open()` builds the engine and session factory, `close()` disposes the
    pool. Components receive the handle at construction time and use
    `session()` for each logical unit of work.
    """

    def __init__(self, url: str, timeout: int = 10):
        self.url = url
        self.timeout = timeout
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreUnavailable("database is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        kwargs = {"future": True}
        if self.url.startswith("sqlite"):
            # For SQLite, enable check_same_thread=False for the threadpool and bound lock waits
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": self.timeout}
            if _is_memory_sqlite(self.url):
                # a single shared connection keeps the in-memory schema alive
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_timeout"] = self.timeout
            kwargs["pool_pre_ping"] = True
        engine = create_engine(self.url, **kwargs)

        # Ensure SQLite enforces foreign keys
        if self.url.startswith("sqlite"):
            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self._engine = engine
        self._sessionmaker = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True
        )
        logger.info("database opened: %s", engine.url.render_as_string(hide_password=True))
        return self

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base
        from . import models  # noqa: F401

        try:
            Base.metadata.create_all(bind=self.engine)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(str(e)) from e

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("database closed")
        self._engine = None
        self._sessionmaker = None

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Scoped unit of work: commit on success, rollback on error, always release."""
        if self._sessionmaker is None:
            raise StoreUnavailable("database is not open")
        session = self._sessionmaker()
        try:
            yield session
            session.commit()
        except _UNAVAILABLE as e:
            session.rollback()
            raise StoreUnavailable(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
