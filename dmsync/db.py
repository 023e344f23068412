"""SQLAlchemy base and database manager for the reference backend."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from dmsync.config import get_settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Owns one engine and hands out short-lived ORM sessions."""

    def __init__(self, database_url: Optional[str] = None) -> None:
        url = database_url or get_settings().database_url_obj
        self.engine: Engine = self._build_engine(url)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @staticmethod
    def _build_engine(url) -> Engine:
        url_str = str(url)
        if url_str.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url_str or url_str.rstrip("/").endswith("sqlite:"):
                # one shared connection, otherwise each session sees an empty db
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, **kwargs)
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine
        return create_engine(url, pool_pre_ping=True)

    def create_all(self) -> None:
        # Import models so they are registered on Base.metadata
        import dmsync.models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def db_session(self) -> Iterator[Session]:
        """Yield a session, rolling back on error and always closing it."""
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
