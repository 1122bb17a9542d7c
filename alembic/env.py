"""Alembic environment: database URL comes from the service configuration."""

from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import URL

from alembic import context
from marathon.helpers import credential_store  # noqa: F401
from marathon.helpers.settings import load_config
from marathon.helpers.store_db import DRIVER, Base, create_store_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> URL:
    db = load_config().database
    return URL.create(
        DRIVER,
        username=db.user,
        password=db.password,
        host=db.host,
        port=db.port,
        database=db.database_name,
        query={"sslmode": db.sslmode},
    )


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_store_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
