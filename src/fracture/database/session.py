"""
SQLite connection for the profile repository.

One process-wide engine backs every ProfileRepository created with the
default scope. The CLI and the MCP server call ``init_database`` once at
startup; tests point it at a temporary file and call ``cleanup_database``
afterwards.
"""

import os
import threading

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from fracture.constants import DEFAULT_DATABASE_PATH
from fracture.database.models import Base

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None
_database_path: str | None = None
_init_lock = threading.Lock()


def init_database(database_path: str | None = None) -> None:
    """
    Open the profile database, creating the file and tables if needed.

    Calls after the first are no-ops until cleanup_database() runs, so the
    CLI and server can both call it safely.

    Args:
        database_path: SQLite file path; defaults to DEFAULT_DATABASE_PATH

    Raises:
        PermissionError: If the parent directory cannot be created
        ValueError: If the path is empty
    """
    global _engine, _SessionFactory, _database_path

    with _init_lock:
        if _engine is not None:
            return

        database_path = database_path or DEFAULT_DATABASE_PATH
        if not isinstance(database_path, str):
            raise ValueError(f"Invalid database path: {database_path!r}")

        parent = os.path.dirname(database_path)
        if parent:
            try:
                os.makedirs(parent, exist_ok=True)
            except PermissionError as e:
                raise PermissionError(
                    f"Cannot create profile database directory {parent}: {e}"
                ) from e

        engine = create_engine(
            f"sqlite:///{database_path}",
            # Profiles are saved from engine worker threads
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            # Concurrent saves from several entities wait instead of failing
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        Base.metadata.create_all(engine)

        _engine = engine
        _SessionFactory = sessionmaker(bind=engine)
        _database_path = database_path


def get_database_path() -> str | None:
    """Path of the open profile database, or None before init_database()."""
    return _database_path


@contextmanager
def session_scope() -> Generator[Session]:
    """
    One profile read or write as a transaction.

    Commits when the block exits cleanly and rolls back otherwise. This is
    the default scope of ProfileRepository.

    Raises:
        RuntimeError: If init_database() has not been called
    """
    if _SessionFactory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def cleanup_database() -> None:
    """Dispose of the engine so the SQLite file can be closed or deleted."""
    global _engine, _SessionFactory, _database_path

    with _init_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
        _SessionFactory = None
        _database_path = None
