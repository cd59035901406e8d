import os
import tempfile
import uuid

import pytest


# Point the app at a throwaway SQLite file BEFORE importing it.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"fleetopia_test_{uuid.uuid4().hex[:8]}.db")
os.environ["DB_URL"] = f"sqlite:///{_DB_PATH}"
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RL_EXEMPT_OTP", "true")
os.environ.setdefault("RL_TEST_DISABLE", "true")

# Keep global rate limit generous; the limiter tests build their own app
os.environ.setdefault("RL_LIMIT_PER_MINUTE_OVERRIDE", "100000")
os.environ.setdefault("RL_AUTH_BOOST_OVERRIDE", "10")

from fastapi.testclient import TestClient  # noqa: E402

from fleetopia.database import SessionLocal, engine  # noqa: E402
from fleetopia.main import app  # noqa: E402


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    try:
        os.remove(_DB_PATH)
    except OSError:
        pass
