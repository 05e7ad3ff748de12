"""Engine and session factory construction.

Nothing here is module-level state: the context object creates the engine
and session factory and disposes of them.
"""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from kanban.db.base import Base


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections get foreign key enforcement and a busy timeout so that
    concurrent writers wait for each other instead of failing immediately.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(database_url, echo=echo, future=True, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine, *, drop: Optional[bool] = False) -> None:
    """Create (optionally recreate) every table."""
    # Register all mappers on Base.metadata
    import kanban.db.models  # noqa: F401

    if drop:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
