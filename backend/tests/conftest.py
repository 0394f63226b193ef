import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docintake.core.config import Settings, get_settings
from docintake.core.dependencies import install_sqlite_hooks
from docintake.models.records import Base

COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests patch env vars; never leak a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_engine():
    """In-memory SQLite shared across threads, with savepoint support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_hooks(engine)
    Base.metadata.create_all(engine)
    return engine


def make_settings(**overrides) -> Settings:
    values = {"enable_web_enrichment": False, "enable_ai_intent": False, "enable_ai_responses": False}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return make_settings()
