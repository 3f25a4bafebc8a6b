from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from sqlalchemy.pool import NullPool


class Base(DeclarativeBase):
    pass


def _quote_ident(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def make_engine(database_url: str, *, db_schema: str | None = None, pool: str = "null", **kwargs) -> Engine:
    """
    Build the engine for one app instance.

    pool="null" keeps the Lambda-friendly default of one connection per
    checkout; pool="queue" uses SQLAlchemy's regular pool. Extra kwargs go
    straight to create_engine (tests pass StaticPool for in-memory SQLite).
    """
    if "poolclass" not in kwargs and pool == "null":
        kwargs["poolclass"] = NullPool

    engine = create_engine(database_url, pool_pre_ping=True, **kwargs)

    if db_schema and engine.dialect.name == "postgresql":
        schema = _quote_ident(db_schema)

        @event.listens_for(engine, "connect")
        def _set_search_path(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute(f"SET search_path TO {schema}")
            cur.close()

    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_schema(engine: Engine, db_schema: str) -> None:
    """
    Optional: prefer deploy-time migrations instead of runtime.
    Keep for local/dev if you want.
    """
    if engine.dialect.name == "postgresql":
        schema = _quote_ident(db_schema)
        with engine.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
            conn.execute(text(f"SET search_path TO {schema}"))

    Base.metadata.create_all(bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.sessionmaker()
    try:
        yield db
    finally:
        db.close()
