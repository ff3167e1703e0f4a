"""SQLAlchemy engine and session helpers."""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_db_engine(database_url: str) -> Engine:
    """Build an engine for ``database_url``, creating SQLite parent directories."""

    db_url = make_url(database_url)
    connect_args: dict = {}
    engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
    if db_url.drivername.startswith("postgresql+psycopg"):
        connect_args["sslmode"] = "require"
    if db_url.drivername.startswith("sqlite"):
        # Requests are served from a thread pool.
        connect_args["check_same_thread"] = False
        if db_url.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
        else:
            Path(db_url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, connect_args=connect_args, **engine_kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back on any error, always close."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
