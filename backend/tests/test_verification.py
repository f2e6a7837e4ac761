"""Tests for the sign-up verification flow and its per-email throttle."""

import pytest

from stageworks.db.repositories import consume_verification_code, issue_verification_code
from stageworks.security import RateLimiter


class CapturingSender:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[tuple[str, str, str]] = []

    def send(self, email: str, code: str, username: str) -> bool:
        self.sent.append((email, code, username))
        return self.succeed


@pytest.fixture
def sender(app):
    capturing = CapturingSender()
    app.state.verification_sender = capturing
    yield capturing
    app.state.verification_sender = None


@pytest.fixture(autouse=True)
def fresh_limiter(app, client):
    """Fresh verification limiter (3 per hour) for every test."""
    app.state.rate_limiters.verification = RateLimiter(max_attempts=3, window_ms=3_600_000)
    client.cookies.clear()
    yield
    client.cookies.clear()


def send(client, email, username="newcomer"):
    return client.post("/auth/send-verification", json={"email": email, "username": username})


class TestSendVerification:
    def test_send_reports_remaining(self, client, sender):
        response = send(client, "carol@example.com", "carol")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sent"
        assert data["remaining_attempts"] == 2
        assert data["expires_at"]
        assert sender.sent[0][0] == "carol@example.com"
        assert len(sender.sent[0][1]) == 6

    def test_fourth_send_is_throttled(self, client, sender):
        for _ in range(3):
            assert send(client, "dave@example.com", "dave").status_code == 200

        response = send(client, "Dave@Example.com", "dave")
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "E1005"
        assert 0 < error["details"]["time_until_reset_ms"] <= 3_600_000
        assert "Retry-After" in response.headers
        assert len(sender.sent) == 3

    def test_throttle_is_per_email(self, client, sender):
        for _ in range(3):
            send(client, "erin@example.com", "erin")
        assert send(client, "frank@example.com", "frank").status_code == 200

    def test_status_endpoint(self, client, sender):
        send(client, "grace@example.com", "grace")
        response = client.get("/auth/verification-status", params={"email": "grace@example.com"})
        assert response.status_code == 200
        data = response.json()
        assert data["remaining_attempts"] == 2
        assert 0 < data["time_until_reset_ms"] <= 3_600_000

    def test_status_for_unknown_email(self, client):
        response = client.get("/auth/verification-status", params={"email": "nobody@example.com"})
        assert response.json() == {"remaining_attempts": 3, "time_until_reset_ms": 0}

    def test_existing_email_conflicts(self, client, sender, make_user):
        make_user("heidi", "heidi@example.com", "heidi-password")
        response = send(client, "heidi@example.com", "heidi2")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E2009"

    def test_sender_failure(self, client, sender):
        sender.succeed = False
        response = send(client, "ivan@example.com", "ivan")
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "E1000"


class TestVerifyCode:
    def _payload(self, email, code, username="judy"):
        return {
            "email": email,
            "username": username,
            "password": "judy-password-1",
            "code": code,
        }

    def test_verify_creates_account_and_session(self, client, sender):
        send(client, "judy@example.com", "judy")
        code = sender.sent[-1][1]

        response = client.post("/auth/verify-code", json=self._payload("judy@example.com", code))
        assert response.status_code == 201
        assert response.json()["user"]["username"] == "judy"
        assert "stageworks_session" in response.cookies
        assert client.get("/auth/me").json()["user"]["email"] == "judy@example.com"

        login = client.post(
            "/auth/login", json={"email": "judy@example.com", "password": "judy-password-1"}
        )
        assert login.status_code == 200

    def test_wrong_code_rejected(self, client, sender):
        send(client, "kim@example.com", "kim")
        code = sender.sent[-1][1]
        wrong = f"{(int(code) + 1) % 1_000_000:06d}"

        response = client.post(
            "/auth/verify-code", json=self._payload("kim@example.com", wrong, "kim")
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E2005"

    def test_code_is_single_use(self, client, sender):
        send(client, "leo@example.com", "leo")
        code = sender.sent[-1][1]
        first = client.post("/auth/verify-code", json=self._payload("leo@example.com", code, "leo"))
        assert first.status_code == 201

        client.cookies.clear()
        again = client.post(
            "/auth/verify-code", json=self._payload("leo@example.com", code, "leo2")
        )
        assert again.status_code == 409

    def test_consume_succeeds_once(self, db_session):
        entry = issue_verification_code(db_session, "Olga@Example.com", ttl_seconds=600)
        assert entry.email == "olga@example.com"
        assert consume_verification_code(db_session, "olga@example.com", entry.code)
        assert not consume_verification_code(db_session, "olga@example.com", entry.code)

    def test_new_code_replaces_old(self, client, sender):
        send(client, "mia@example.com", "mia")
        old = sender.sent[-1][1]
        send(client, "mia@example.com", "mia")
        new = sender.sent[-1][1]
        if old == new:
            pytest.skip("Codes collided")

        response = client.post("/auth/verify-code", json=self._payload("mia@example.com", old, "mia"))
        assert response.status_code == 400
        response = client.post("/auth/verify-code", json=self._payload("mia@example.com", new, "mia"))
        assert response.status_code == 201

    def test_malformed_code_is_validation_error(self, client):
        response = client.post(
            "/auth/verify-code", json=self._payload("nick@example.com", "12ab56", "nick")
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "E1001"


class TestConcurrentSignUp:
    """Another sign-up commits between the route's checks and its insert."""

    @pytest.fixture
    def competing_user(self, monkeypatch, make_user):
        import stageworks.api.auth as auth_api

        real_consume = auth_api.consume_verification_code

        def install(username, email):
            def consume_then_compete(db, code_email, code):
                consumed = real_consume(db, code_email, code)
                make_user(username, email, "other-password-1")
                return consumed

            monkeypatch.setattr(auth_api, "consume_verification_code", consume_then_compete)

        return install

    def _verify(self, client, db_session, email, username):
        entry = issue_verification_code(db_session, email, ttl_seconds=600)
        return client.post(
            "/auth/verify-code",
            json={
                "email": email,
                "username": username,
                "password": "racer-password-1",
                "code": entry.code,
            },
        )

    def test_email_taken_by_concurrent_sign_up(self, client, db_session, competing_user):
        competing_user("pat_other", "pat@example.com")

        response = self._verify(client, db_session, "pat@example.com", "pat")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E2009"

    def test_username_taken_by_concurrent_sign_up(self, client, db_session, competing_user):
        competing_user("quinn", "quinn-other@example.com")

        response = self._verify(client, db_session, "quinn@example.com", "quinn")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E2008"
        assert "stageworks_session" not in response.cookies
