from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fraudit.config import get_settings
from fraudit.models import Base

log = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(database_url: str | None = None) -> Engine:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if database_url is None:
            settings = get_settings()
            settings.ensure_directories()
            database_url = settings.database_url
        _engine = make_engine(database_url)
        Base.metadata.create_all(_engine)
        _SessionLocal = make_session_factory(_engine)
        log.info("Database ready at %s", _engine.url.render_as_string(hide_password=True))
        return _engine


def get_session_factory() -> sessionmaker:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        return _SessionLocal


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(factory: SessionFactory | None = None) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on error.

    Usage (CLI, batch workers, scripts)::

        with session_scope() as session:
            ...
    """
    session = (factory or get_session)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
