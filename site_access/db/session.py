from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import get_settings
from . import models  # noqa: F401  registers tables on Base.metadata
from .base import Base


def _normalize_database_url(database_url: str) -> str:
    # Hosted PostgreSQL URLs usually come without an explicit driver.
    if database_url.startswith("postgresql://"):
        return f"postgresql+psycopg://{database_url[len('postgresql://'):]}"
    if database_url.startswith("postgres://"):
        return f"postgresql+psycopg://{database_url[len('postgres://'):]}"
    return database_url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    url = _normalize_database_url(database_url)
    if not url.startswith("sqlite"):
        return create_engine(url, future=True, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # One shared connection, otherwise every checkout sees an empty database.
        sqlite_engine = create_engine(url, future=True, connect_args=connect_args, poolclass=StaticPool)
    else:
        db_file = url.split("sqlite:///", 1)[-1]
        if db_file:
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        sqlite_engine = create_engine(url, future=True, connect_args=connect_args)
    # SQLite ignores ON DELETE rules unless foreign keys are switched on per connection.
    event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
    return sqlite_engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


engine = build_engine(get_settings().database_url)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind=bind or engine)
