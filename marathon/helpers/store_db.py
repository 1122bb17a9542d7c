"""Engine bootstrap and session handling for the credential database.

The engine is created once at startup and passed explicitly to whatever
needs it; nothing in this module holds a global connection.

Usage:
    from marathon.helpers.store_db import connect, get_session

    engine = connect("localhost", 5432, "marathon", "secret", "marathon")
    with get_session(engine) as db:
        ...
    engine.dispose()
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import event, text
from sqlalchemy.engine import URL, Engine, create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from marathon.helpers.store_errors import StoreConnectivityError

logger = logging.getLogger(__name__)

DRIVER = "postgresql+psycopg2"


class Base(DeclarativeBase):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(url: str | URL, **engine_kwargs) -> Engine:
    """Create an engine for ``url``.

    SQLite connections get foreign key enforcement switched on so the
    schema constraints behave the same as on PostgreSQL.
    """
    engine = create_engine(url, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def ping(engine: Engine) -> None:
    """Run a ``SELECT 1`` round-trip, raising StoreConnectivityError on failure."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except DBAPIError as exc:
        raise StoreConnectivityError(
            f"database at {engine.url.render_as_string(hide_password=True)} "
            "is unreachable"
        ) from exc


def connect(
    host: str,
    port: int,
    user: str,
    password: str,
    database_name: str,
    *,
    sslmode: str = "disable",
    pool_size: int = 5,
    max_overflow: int = 10,
) -> Engine:
    """Open a pooled PostgreSQL engine and verify that it is reachable.

    Fails fast: no retry is attempted, the caller decides whether to abort
    startup.
    """
    url = URL.create(
        DRIVER,
        username=user,
        password=password,
        host=host,
        port=port,
        database=database_name,
        query={"sslmode": sslmode},
    )
    engine = create_store_engine(url, pool_size=pool_size, max_overflow=max_overflow)
    try:
        ping(engine)
    except StoreConnectivityError:
        engine.dispose()
        raise
    logger.info("Connected to database %s on %s:%s", database_name, host, port)
    return engine


@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a session bound to ``engine``; roll back on error, always close.

    Write helpers commit their own work, so leaving the block does not
    commit anything.
    """
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    """Create all tables known to ``Base`` (local development and tests)."""
    # models register themselves on Base when imported
    import marathon.helpers.credential_store  # noqa: F401

    Base.metadata.create_all(engine)


def dispose(engine: Engine) -> None:
    engine.dispose()
    logger.info("Database connection pool closed")
