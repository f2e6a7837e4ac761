"""Tests for the admin lockout API."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from stageworks.core.time import utcnow
from stageworks.db.models import AuditLog
from stageworks.security import RateLimiter, SqlAttemptStore

ADMIN_PASSWORD = "admin-password-123"
USER_PASSWORD = "user-password-123"


@pytest.fixture
def users(make_user):
    make_user("root", "root@example.com", ADMIN_PASSWORD, role="admin")
    make_user("bob", "bob@example.com", USER_PASSWORD)


@pytest.fixture
def admin_client(client, users, clean_attempts):
    """Module client logged in as admin, with the CSRF header preset."""
    client.cookies.clear()
    response = client.post(
        "/auth/login", json={"email": "root@example.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    client.headers["X-CSRF-Token"] = response.json()["csrf_token"]
    yield client
    client.headers.pop("X-CSRF-Token", None)
    client.cookies.clear()


def lock_bob(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": "bob@example.com", "password": "nope"})


class TestAccess:
    def test_requires_authentication(self, client, users):
        client.cookies.clear()
        response = client.get("/admin/lockouts")
        assert response.status_code == 401

    def test_requires_admin_role(self, client, users, clean_attempts):
        client.cookies.clear()
        client.post("/auth/login", json={"email": "bob@example.com", "password": USER_PASSWORD})
        response = client.get("/admin/lockouts")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E3000"
        client.cookies.clear()


class TestLockoutAdmin:
    def test_list_lockouts(self, admin_client):
        lock_bob(admin_client)
        response = admin_client.get("/admin/lockouts")
        assert response.status_code == 200
        records = {r["identity"]: r for r in response.json()["records"]}
        assert records["bob@example.com"]["locked"] is True
        assert records["bob@example.com"]["failed_attempts"] == 5

    def test_lockout_info(self, admin_client):
        lock_bob(admin_client)
        response = admin_client.get("/admin/lockouts/info", params={"email": "Bob@Example.com"})
        assert response.status_code == 200
        info = response.json()
        assert info["locked"] is True
        assert info["failed_attempts"] == 5
        assert info["time_remaining"] == "15 minutes"

    def test_lockout_info_not_locked(self, admin_client):
        response = admin_client.get("/admin/lockouts/info", params={"email": "bob@example.com"})
        assert response.json() == {"locked": False, "remaining_attempts": 5}

    def test_lockout_info_leaves_expired_record(self, admin_client, db_session):
        store = SqlAttemptStore(db_session)
        long_ago = utcnow() - timedelta(days=1)
        store.upsert(
            "bob@example.com",
            failed_attempts=5,
            last_attempt_at=long_ago,
            lockout_until=long_ago + timedelta(minutes=15),
        )

        response = admin_client.get("/admin/lockouts/info", params={"email": "bob@example.com"})

        assert response.json() == {"locked": False, "remaining_attempts": 5}
        assert store.get("bob@example.com").failed_attempts == 5

    def test_lockout_info_invalid_email(self, admin_client):
        response = admin_client.get("/admin/lockouts/info", params={"email": "bob"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E1007"

    def test_clear_lockout_lets_user_log_in(self, admin_client, db_session):
        lock_bob(admin_client)

        response = admin_client.post(
            "/admin/lockouts", json={"action": "clear", "email": "BOB@example.com"}
        )
        assert response.status_code == 200
        assert response.json() == {"status": "cleared", "email": "bob@example.com"}

        entry = db_session.execute(
            select(AuditLog).where(AuditLog.action == "lockout_clear")
        ).scalars().first()
        assert entry.target_id == "bob@example.com"

        info = admin_client.get("/admin/lockouts/info", params={"email": "bob@example.com"})
        assert info.json() == {"locked": False, "remaining_attempts": 5}

    def test_clear_is_idempotent(self, admin_client):
        for _ in range(2):
            response = admin_client.post(
                "/admin/lockouts", json={"action": "clear", "email": "bob@example.com"}
            )
            assert response.status_code == 200

    def test_unknown_action_rejected(self, admin_client):
        response = admin_client.post(
            "/admin/lockouts", json={"action": "extend", "email": "bob@example.com"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E1001"

    def test_clear_requires_csrf(self, admin_client):
        admin_client.headers.pop("X-CSRF-Token")
        response = admin_client.post(
            "/admin/lockouts", json={"action": "clear", "email": "bob@example.com"}
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E2003"

    def test_cleanup(self, admin_client):
        response = admin_client.post("/admin/lockouts/cleanup")
        assert response.status_code == 200
        assert set(response.json()) == {"lockouts_cleared", "attempts_reset", "total"}

    def test_metrics(self, admin_client):
        lock_bob(admin_client)
        snapshot = admin_client.get("/admin/metrics").json()
        assert snapshot["counters"]["lockouts_total"] >= 1
        assert "rate_limit_keys" in snapshot["gauges"]

        counters_only = admin_client.get("/admin/metrics", params={"kind": "counters"}).json()
        assert set(counters_only) == {"counters"}


class TestAdminRateLimit:
    @pytest.fixture
    def tight_admin_limit(self, app):
        registry = app.state.rate_limiters
        original = registry.admin
        registry.admin = RateLimiter(max_attempts=2, window_ms=60_000)
        yield
        registry.admin = original

    def test_admin_requests_throttled_per_ip(self, admin_client, tight_admin_limit):
        assert admin_client.get("/admin/lockouts").status_code == 200
        assert admin_client.get("/admin/lockouts").status_code == 200

        response = admin_client.get("/admin/lockouts")
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "E1005"
        assert 1 <= int(response.headers["Retry-After"]) <= 60
