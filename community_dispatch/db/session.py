"""Engine and session factory, built lazily from ``DATABASE_URL``.

The API dependencies and the job scheduler share one factory; each request
and each sweep opens its own session from it.
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from community_dispatch.core.settings import get_settings

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def engine_options(database_url: str) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # a single shared connection, otherwise each session sees an empty database
        options["poolclass"] = StaticPool
    return options


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        database_url = get_settings().database_url
        _engine = create_engine(database_url, **engine_options(database_url))
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            class_=Session,
        )
    return _session_factory


def dispose_engine() -> None:
    """Close pooled connections and forget the factory (app shutdown, tests)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
