from __future__ import annotations

from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.domain.models import Base


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": echo}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # SQLite serializes writers; wait on the file lock instead of failing fast.
        engine_kwargs["connect_args"] = {"timeout": 30, "check_same_thread": False}
    else:
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 5
        engine_kwargs["pool_recycle"] = 1800
    engine = create_engine(database_url, **engine_kwargs)
    if is_sqlite:
        _use_immediate_transactions(engine)
    return engine


def _use_immediate_transactions(engine: Engine) -> None:
    # Take the SQLite write lock at BEGIN so concurrent read-then-write
    # transactions queue on the busy timeout instead of deadlocking.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Create missing tables; existing tables are left untouched.
    Base.metadata.create_all(engine)
