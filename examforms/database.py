"""Database configuration and session dependency."""

from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from examforms.config import get_settings

settings = get_settings()


def _connect_args(url: str) -> dict:
    # sqlite's busy timeout bounds how long a write waits on a locked database
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.db_timeout_seconds}
    return {}


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """Turn on FK enforcement so deleting a session cascades to its children."""
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# echo=False to avoid noisy logs; toggle for debugging
engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=_connect_args(settings.database_url),
)
enable_sqlite_foreign_keys(engine)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # models must be imported so their tables are registered on the metadata
    from examforms import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session
