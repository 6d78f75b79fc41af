from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.models.base import Base
from app.models import cart, product, store_settings  # noqa: F401  (register tables)

logger = logging.getLogger(__name__)


def _sa_url(url: str) -> str:
    # postgresql:// -> postgresql+psycopg:// (psycopg 3 driver)
    return url.replace("postgresql://", "postgresql+psycopg://", 1)


def _sqlite_url(path: str) -> str:
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
    return f"sqlite+pysqlite:///{path}"


class Database:
    """Engine + session factory; one per process, one per test."""

    def __init__(self, url: str):
        self.url = url
        if url.startswith("sqlite"):
            self.engine: Engine = create_engine(
                url, future=True, connect_args={"timeout": 30, "check_same_thread": False}
            )
            event.listen(self.engine, "connect", _sqlite_pragmas)
        else:
            self.engine = create_engine(url, pool_pre_ping=True, future=True)
        self.dialect = self.engine.dialect.name
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        with self.SessionLocal() as session, session.begin():
            yield session

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.close()


def database_url_from_settings() -> str:
    if settings.DATABASE_URL.strip():
        return _sa_url(settings.DATABASE_URL.strip())
    return _sqlite_url(settings.DB_PATH)


_default: Optional[Database] = None


def get_database() -> Database:
    # building the engine does not connect; the first session does
    global _default
    if _default is None:
        _default = Database(database_url_from_settings())
    return _default


def set_database(db: Optional[Database]) -> None:
    global _default
    _default = db


def init_database() -> bool:
    """
    Create missing tables at startup. An unreachable database is logged and
    left for the request paths to degrade on.
    """
    db = get_database()
    try:
        db.create_all()
    except SQLAlchemyError:
        logger.warning("database init failed (%s); continuing without it", db.engine.url, exc_info=True)
        return False
    return True
