import pytest
from sqlalchemy.pool import StaticPool

from marathon.helpers.credential_store import Client
from marathon.helpers.store_db import create_schema, create_store_engine, get_session


@pytest.fixture
def engine():
    engine = create_store_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with get_session(engine) as session:
        session.add_all([Client(id=1, secret=b"client-one"), Client(id=2)])
        session.commit()
        yield session
