import os
import pathlib
import sys
import tempfile

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))

SERVICE_KEY = "test-service-role-key"


def pytest_configure():
    os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", SERVICE_KEY)
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="observer-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture()
def sqlite_engine():
    from observer.app.db import Base, engine
    import observer.app.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def sqlite_session(sqlite_engine):
    from observer.app.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def observer_settings():
    from observer.app.config import ObserverSettings

    return ObserverSettings(
        database_url=os.environ["DATABASE_URL"],
        service_role_key=SERVICE_KEY,
        user_timeout_seconds=10,
        user_page_size=2,
    )


@pytest.fixture()
def api_client(sqlite_engine, sqlite_session, observer_settings):
    from observer.app.api.deps import get_settings
    from observer.app.db import get_db
    from observer.app.main import app
    from fastapi.testclient import TestClient

    def _get_test_db():
        yield sqlite_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_settings] = lambda: observer_settings
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_settings, None)
