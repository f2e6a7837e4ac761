"""Shared fixtures: a migrated temporary SQLite database per test module."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import delete

BACKEND_DIR = Path(__file__).resolve().parent.parent

TEST_ENV = {
    "SECRET_KEY": "test-secret-key-for-testing-only-min-16",
    "COOKIE_SECURE": "false",
    "ENVIRONMENT": "development",
    "RATE_LIMIT_RPM": "100000",
    "ADMIN_RATE_LIMIT_MAX_ATTEMPTS": "100000",
    "LOG_LEVEL": "WARNING",
}


class FakeClock:
    """Settable naive-UTC clock for the lockout service."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock (seconds) for rate limiters."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def upgrade_database(db_url: str) -> None:
    cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "migrations"))
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


@pytest.fixture(scope="module")
def monkeypatch_module():
    """Module-scoped monkeypatch fixture."""
    from _pytest.monkeypatch import MonkeyPatch

    m = MonkeyPatch()
    yield m
    m.undo()


@pytest.fixture(scope="module")
def migrated_db(tmp_path_factory, monkeypatch_module):
    """Run Alembic migrations on a temporary database and point settings at it."""
    db_path = tmp_path_factory.mktemp("db") / "stageworks_test.db"
    db_url = f"sqlite:///{db_path}"

    monkeypatch_module.setenv("DATABASE_URL", db_url)
    for key, value in TEST_ENV.items():
        monkeypatch_module.setenv(key, value)

    from stageworks.config import get_settings
    from stageworks.db import dispose_engine, reset_session_factory

    get_settings.cache_clear()
    dispose_engine()
    reset_session_factory()

    upgrade_database(db_url)

    yield db_path

    dispose_engine()
    reset_session_factory()
    get_settings.cache_clear()


@pytest.fixture(scope="module")
def app(migrated_db):
    from stageworks.main import create_app

    return create_app()


@pytest.fixture(scope="module")
def client(app):
    """Test client with the lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def anon_client(client):
    """The module client with cookies cleared."""
    client.cookies.clear()
    yield client
    client.cookies.clear()


@pytest.fixture
def db_session(migrated_db):
    from stageworks.db import get_session_factory

    session = get_session_factory()()
    yield session
    session.close()


@pytest.fixture
def clean_attempts(db_session):
    """Empty the login_attempts table around a test."""
    from stageworks.db.models import LoginAttempt

    db_session.execute(delete(LoginAttempt))
    db_session.commit()
    yield
    db_session.execute(delete(LoginAttempt))
    db_session.commit()


@pytest.fixture(scope="module")
def make_user(migrated_db):
    """Factory creating users directly through the repository."""
    from stageworks.auth.password import hash_password
    from stageworks.db import get_session_factory
    from stageworks.db.repositories import create_user, get_user_by_email

    def _make(username: str, email: str, password: str, role: str = "user", status: str = "active"):
        db = get_session_factory()()
        try:
            existing = get_user_by_email(db, email)
            if existing:
                return existing
            return create_user(
                db,
                username=username,
                email=email,
                password_hash=hash_password(password),
                role=role,
                status=status,
            )
        finally:
            db.close()

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()
