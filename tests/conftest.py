import pytest

from crosspost.db.base import Base, build_engine, build_session_factory
import crosspost.db.models  # noqa: F401  registers tables


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
