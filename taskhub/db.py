from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import get_settings


class Base(DeclarativeBase):
    pass


def _sqlite_url(db_path: str) -> str:
    if db_path.startswith("sqlite:"):
        return db_path
    return f"sqlite:///{db_path}"


def make_engine(db_path: str, *, busy_timeout_ms: int = 5000) -> Engine:
    """SQLite engine shared by the API threads, the scheduler and the CLI.

    Every connection enforces foreign keys and waits up to `busy_timeout_ms`
    on a locked database.
    """
    engine = create_engine(
        _sqlite_url(db_path),
        connect_args={"check_same_thread": False},
    )
    timeout = max(0, int(busy_timeout_ms))

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={timeout}")
        cursor.close()

    return engine


settings = get_settings()
engine = make_engine(settings.database.path, busy_timeout_ms=settings.database.busy_timeout_ms)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
