"""
API tests for the authentication endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select, text

from phonegate import create_app
from phonegate.auth import build_auth_gateway
from phonegate.auth.audit import LoginAttempt, SecurityEvent
from phonegate.auth.blocklist import BlocklistService, IdentifierType
from phonegate.auth.notifier import Notifier

from conftest import PASSWORD, PHONE, bearer, login, register, signup_payload, wrong_code

API = "/api/v1/auth"


def run_in_app(client: TestClient, fn):
    """Run ``fn(db)`` on the application's own loop and database."""
    async def _run():
        async with client.app.state.db.get_session() as db:
            return await fn(db)
    return client.portal.call(_run)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["security"]["activeSessions"] == 0
    assert "X-Process-Time" in response.headers
    assert "X-Request-ID" in response.headers


def test_signup_then_verify_creates_verified_user(client, delivery):
    response = client.post(f"{API}/signup", json=signup_payload())
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["phone"] == PHONE
    assert body["data"]["otpExpiresIn"] == 300
    assert response.headers["X-RateLimit-Limit"] == "3"

    code = delivery.last_code(PHONE)
    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": code})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["isVerified"] is True
    assert data["user"]["fullName"] == "Asha Rao"
    assert data["token"]

    me = client.get(f"{API}/me", headers=bearer(data["token"]))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["phone"] == PHONE


def test_signup_accepts_formatted_phone_and_snake_case(client, delivery):
    payload = {
        "full_name": "Asha Rao",
        "phone": "+91 98765-43210",
        "email": "ASHA@example.com",
        "password": PASSWORD,
    }
    response = client.post(f"{API}/signup", json=payload)

    assert response.status_code == 200
    assert response.json()["data"]["phone"] == PHONE
    assert delivery.last_code(PHONE)


def test_signup_validation_error(client):
    response = client.post(f"{API}/signup", json=signup_payload(phone="12345"))

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["message"] == "Validation failed"
    assert any(err["field"] == "phone" for err in body["errors"])


def test_signup_rejects_registered_phone(client, delivery):
    register(client, delivery)

    response = client.post(f"{API}/signup", json=signup_payload(email="other@example.com"))

    assert response.status_code == 400
    assert response.json()["error_code"] == "PHONE_TAKEN"


def test_same_phone_can_register_as_provider(client, delivery):
    register(client, delivery)
    data = register(client, delivery, role="provider", email="asha.pro@example.com")

    assert data["user"]["role"] == "provider"


def test_second_signup_wins(client, delivery):
    client.post(f"{API}/signup", json=signup_payload(fullName="First Name"))
    client.post(f"{API}/signup", json=signup_payload(fullName="Second Name"))

    code = delivery.last_code(PHONE)
    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": code})

    assert response.json()["data"]["user"]["fullName"] == "Second Name"


def test_verify_without_pending_signup(client, gateway):
    record = client.portal.call(gateway.otp.issue, PHONE)

    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": record.code})

    assert response.status_code == 404
    assert response.json()["error_code"] == "NO_PENDING_SIGNUP"


def test_otp_lockout_rejects_correct_code(client, delivery):
    client.post(f"{API}/signup", json=signup_payload())
    code = delivery.last_code(PHONE)
    bad = wrong_code(code)

    for remaining in (4, 3, 2, 1):
        response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": bad})
        assert response.status_code == 401
        assert response.json()["remaining_attempts"] == remaining

    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": bad})
    assert response.status_code == 429

    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": code})
    assert response.status_code == 429
    body = response.json()
    assert body["locked"] is True
    assert body["lockout_time_remaining"] > 0
    assert "Retry-After" in response.headers


def test_resend_otp_for_pending_signup(client, delivery):
    client.post(f"{API}/signup", json=signup_payload())

    response = client.post(f"{API}/resend-otp", json={"phone": PHONE})

    assert response.status_code == 200
    assert len(delivery.sent) == 2
    second = delivery.last_code(PHONE)
    response = client.post(f"{API}/verify-otp", json={"phone": PHONE, "otp": second})
    assert response.status_code == 200


def test_send_otp_unknown_phone(client):
    response = client.post(f"{API}/send-otp", json={"phone": PHONE})

    assert response.status_code == 404


def test_delivery_failure_is_not_wrong_code(client, delivery):
    delivery.fail_with = "provider down"

    response = client.post(f"{API}/signup", json=signup_payload())

    assert response.status_code == 500
    assert response.json()["error_code"] == "OTP_DELIVERY_FAILED"


def test_signup_rate_limited_per_ip(client):
    for _ in range(3):
        assert client.post(f"{API}/signup", json=signup_payload()).status_code == 200

    response = client.post(f"{API}/signup", json=signup_payload())

    assert response.status_code == 429
    assert response.json()["error_code"] == "RATE_LIMITED"
    assert int(response.headers["Retry-After"]) > 0


def test_login_success_with_formatted_phone(client, delivery):
    register(client, delivery)

    response = login(client, phone="+91 98765 43210")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token"]
    assert data["session"]["id"]


def test_login_failures_are_generic(client, delivery):
    register(client, delivery)

    wrong_password = login(client, password="nope-nope")
    unknown_phone = login(client, phone="9123456789")
    wrong_role = login(client, role="provider")

    for response in (wrong_password, unknown_phone, wrong_role):
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid phone number, password, or role"


def test_login_malformed_phone_is_audited(client):
    response = login(client, phone="12")

    assert response.status_code == 400
    count = run_in_app(client, lambda db: _count(db, LoginAttempt))
    assert count == 1


async def _count(db, model):
    result = await db.execute(select(func.count(model.id)))
    return result.scalar_one()


def test_eleventh_login_blocked_even_with_correct_password(client, delivery):
    register(client, delivery)

    for _ in range(10):
        assert login(client, password="wrong-password").status_code == 401

    response = login(client)

    assert response.status_code == 429
    assert "Too many failed login attempts" in response.json()["message"]
    # Ten failures plus the blocked attempt
    assert run_in_app(client, lambda db: _count(db, LoginAttempt)) == 11


def test_successful_logins_do_not_use_up_the_window(client, delivery):
    register(client, delivery)

    for _ in range(12):
        assert login(client).status_code == 200


def test_logout_revokes_token(client, delivery):
    token = register(client, delivery)["token"]

    response = client.post(f"{API}/logout", headers=bearer(token))
    assert response.status_code == 200

    response = client.get(f"{API}/me", headers=bearer(token))
    assert response.status_code == 401
    assert response.json()["error_code"] == "TOKEN_REVOKED"
    assert response.json()["message"] == "Token has been revoked"


def test_missing_token(client):
    response = client.get(f"{API}/me")

    assert response.status_code == 401
    assert response.json()["message"] == "Access denied. No token provided."


def test_logout_all_revokes_every_session(client, delivery):
    tokens = [register(client, delivery)["token"]]
    tokens += [login(client).json()["data"]["token"] for _ in range(2)]

    response = client.post(f"{API}/logout-all", headers=bearer(tokens[0]))

    assert response.status_code == 200
    assert response.json()["data"]["revokedCount"] == 3
    for token in tokens:
        assert client.get(f"{API}/me", headers=bearer(token)).status_code == 401


def test_refresh_rotates_token(client, delivery):
    old = register(client, delivery)["token"]

    response = client.post(f"{API}/refresh", headers=bearer(old))

    assert response.status_code == 200
    new = response.json()["data"]["token"]
    assert new != old
    assert client.get(f"{API}/me", headers=bearer(old)).status_code == 401
    assert client.get(f"{API}/me", headers=bearer(new)).status_code == 200


def test_list_and_revoke_sessions(client, delivery):
    first = register(client, delivery)["token"]
    second = login(client).json()["data"]

    response = client.get(f"{API}/sessions", headers=bearer(first))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert sum(1 for s in data["sessions"] if s["isCurrent"]) == 1

    response = client.delete(f"{API}/sessions/{second['session']['id']}", headers=bearer(first))
    assert response.status_code == 200
    assert response.json()["data"]["wasCurrent"] is False
    assert client.get(f"{API}/me", headers=bearer(second["token"])).status_code == 401

    response = client.delete(f"{API}/sessions/{second['session']['id']}", headers=bearer(first))
    assert response.status_code == 404


def test_password_reset_revokes_existing_tokens(client, delivery):
    before = register(client, delivery)["token"]
    also_before = login(client).json()["data"]["token"]

    response = client.post(f"{API}/forgot-password", json={"phone": PHONE})
    assert response.status_code == 200
    code = delivery.last_code(PHONE)

    response = client.post(f"{API}/forgot-password/verify", json={"phone": PHONE, "otp": code})
    assert response.status_code == 200
    reset_token = response.json()["data"]["resetToken"]

    reset = {"phone": PHONE, "resetToken": reset_token, "newPassword": "brand-new-pass"}
    response = client.post(f"{API}/forgot-password/reset", json=reset)
    assert response.status_code == 200
    assert response.json()["data"]["revokedSessions"] == 2

    for token in (before, also_before):
        response = client.get(f"{API}/me", headers=bearer(token))
        assert response.status_code == 401
    assert login(client).status_code == 401
    assert login(client, password="brand-new-pass").status_code == 200

    response = client.post(f"{API}/forgot-password/reset", json=reset)
    assert response.status_code == 401
    assert response.json()["error_code"] == "RESET_TOKEN_USED"


def test_forgot_password_unknown_account(client):
    response = client.post(f"{API}/forgot-password", json={"phone": PHONE, "role": "provider"})

    assert response.status_code == 404
    assert response.json()["message"] == "Provider not found"


def test_blocked_identifier(client, delivery):
    register(client, delivery)
    run_in_app(client, lambda db: BlocklistService.block(db, IdentifierType.PHONE, PHONE, "user"))

    response = login(client)
    assert response.status_code == 403
    assert response.json()["error_code"] == "ACCOUNT_BLOCKED"

    run_in_app(client, lambda db: BlocklistService.block(db, IdentifierType.EMAIL, "new@example.com", "provider"))
    response = client.post(
        f"{API}/signup",
        json=signup_payload(phone="9123456789", email="new@example.com", role="provider"),
    )
    assert response.status_code == 403


def test_audit_trail_for_session_lifecycle(client, delivery):
    token = register(client, delivery)["token"]
    token = client.post(f"{API}/refresh", headers=bearer(token)).json()["data"]["token"]
    client.post(f"{API}/logout", headers=bearer(token))

    async def event_types(db):
        result = await db.execute(select(SecurityEvent.event_type).order_by(SecurityEvent.id))
        return list(result.scalars().all())

    assert run_in_app(client, event_types) == ["signup", "token_refresh", "logout"]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def user_registered(self, user):
        self.events.append(("user_registered", user.id))

    async def session_created(self, user, session):
        self.events.append(("session_created", user.id))


def test_notifier_hears_new_users_and_sessions(settings, store, delivery, clock):
    notifier = RecordingNotifier()
    gateway = build_auth_gateway(store, settings, delivery=delivery, notifier=notifier, clock=clock)
    app = create_app(settings, store=store, gateway=gateway)

    with TestClient(app) as client:
        register(client, delivery)
        login(client)

    assert [name for name, _ in notifier.events] == ["user_registered", "session_created", "session_created"]


@pytest.mark.parametrize("path", ["/refresh", "/logout", "/logout-all", "/sessions"])
def test_endpoints_require_token(client, path):
    method = client.get if path == "/sessions" else client.post

    response = method(f"{API}{path}", headers=bearer("not-a-token"))

    assert response.status_code == 401
    assert response.json()["error_code"] == "TOKEN_INVALID"


def test_reset_token_for_user_cannot_reset_provider(client, delivery):
    register(client, delivery)
    register(client, delivery, email="pro@example.com", role="provider")

    client.post(f"{API}/forgot-password", json={"phone": PHONE, "role": "user"})
    code = delivery.last_code(PHONE)
    response = client.post(f"{API}/forgot-password/verify", json={"phone": PHONE, "otp": code, "role": "user"})
    reset_token = response.json()["data"]["resetToken"]

    response = client.post(
        f"{API}/forgot-password/reset",
        json={"phone": PHONE, "resetToken": reset_token, "newPassword": "taken-over", "role": "provider"},
    )

    assert response.status_code == 401
    assert response.json()["error_code"] == "RESET_SESSION_NOT_FOUND"
    assert login(client, role="provider").status_code == 200
    assert login(client, password="taken-over", role="provider").status_code == 401


def test_login_succeeds_when_audit_write_fails(client, delivery):
    register(client, delivery)

    async def drop_events():
        async with client.app.state.db.engine.begin() as conn:
            await conn.execute(text("DROP TABLE security_events"))
    client.portal.call(drop_events)

    response = login(client)

    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["user"]["phone"] == PHONE
    assert client.get(f"{API}/me", headers=bearer(data["token"])).status_code == 200


def test_health_reports_security_counts(client, delivery):
    token = register(client, delivery)["token"]
    login(client)
    login(client, password="wrong-password")
    client.post(f"{API}/logout", headers=bearer(token))

    security = client.get("/health").json()["security"]

    assert security["activeSessions"] == 1
    assert security["activeUsers"] == 1
    assert security["blacklistedTokens"] == 1
    assert security["loginAttempts"] == 2
    assert security["successfulLogins"] == 1
    assert security["failedLogins"] == 1
    assert security["windowHours"] == 24
