"""
Database engine and session management.
"""

from pathlib import Path
from typing import Generator

from fastapi import Request
from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from agent_relay.models import Base


class Database:
    """
    Engine plus session factory for one database URL.

    SQLite connections get WAL journaling and a busy timeout so readers
    never block on the single writer.
    """

    def __init__(self, url: str):
        self.url = make_url(url)
        is_sqlite = self.url.get_backend_name() == "sqlite"

        connect_args = {"check_same_thread": False} if is_sqlite else {}
        self.engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        if is_sqlite:
            event.listen(self.engine, "connect", _sqlite_pragmas)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def init_db(self) -> None:
        """Create tables if they do not exist yet."""
        if self.url.get_backend_name() == "sqlite" and self.url.database not in (None, "", ":memory:"):
            Path(self.url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database ready: {self.url.render_as_string(hide_password=True)}")

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout = 5000")  # 5s timeout for lock contention
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def get_db(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    db = request.app.state.db.SessionLocal()
    try:
        yield db
    finally:
        db.close()
