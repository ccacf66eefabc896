"""SQLAlchemy engine helpers used by schema tooling and tests."""

from __future__ import annotations

import os
import uuid

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from . import Base


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine for ``database_url`` or ``DATABASE_URL``.

    SQLite engines get a ``gen_random_uuid`` function and enforced foreign
    keys so the declared server defaults and constraints behave like Postgres.
    """

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def create_schema(engine: Engine) -> None:
    """Create every declared table on ``engine``."""

    Base.metadata.create_all(engine)


def get_sessionmaker(database_url: str | None = None, **kwargs: object) -> sessionmaker[Session]:
    engine = get_engine(database_url=database_url, **kwargs)
    create_schema(engine)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


__all__ = ["Base", "create_schema", "get_engine", "get_sessionmaker"]
