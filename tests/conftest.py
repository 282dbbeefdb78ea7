"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401 - registers all ORM models
from app.database import Base, build_engine, get_db, get_session_factory  # noqa: E402
from app.services.coordinator import RunCoordinator  # noqa: E402
from tests.seed import CountingInvoker, add_model, seed_canon  # noqa: E402


@pytest.fixture(scope="function")
def session_factory(tmp_path):
    """File-backed SQLite database per test, shared by dispatch threads."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield TestingSessionLocal

    engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()

    yield db

    db.close()


@pytest.fixture(scope="function")
def canon(session_factory):
    """Seed one bible with two books and five chapters."""
    return seed_canon(session_factory)


@pytest.fixture(scope="function")
def models(session_factory, canon):
    """A perfect reciter, one that fails Genesis 2, and an inactive model."""
    return {
        "perfect": add_model(session_factory, 1, {"mode": "echo_raw"}),
        "flaky": add_model(session_factory, 2, {"mock": {"failTargets": [102]}}),
        "inactive": add_model(session_factory, 3, is_active=False),
    }


@pytest.fixture(scope="function")
def invoker():
    return CountingInvoker()


@pytest.fixture(scope="function")
def coordinator(session_factory, invoker):
    return RunCoordinator(session_factory, invoker=invoker, parallelism=2, call_timeout=10)


@pytest.fixture(scope="function")
def client(session_factory, models):
    """Test client bound to the per-test database."""
    from app.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    yield TestClient(app)

    app.dependency_overrides.clear()
