from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from agenda.config import get_settings, sqlite_url
from agenda.models import Base

_lock = threading.Lock()
_engine = None
_SessionLocal = None
_current_db_path: Path | None = None


def _enable_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal, _current_db_path
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            settings = get_settings()
            db_path, url = settings.database_path, settings.database_url
        else:
            db_path = Path(db_path)
            url = sqlite_url(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(_engine, "connect", _enable_foreign_keys)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _current_db_path = db_path


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (MCP server, CLI, etc.)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_generator() -> Generator[Session, None, None]:
    """Generator-based session suitable for FastAPI ``Depends()``."""
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def current_db_path() -> Path | None:
    return _current_db_path
