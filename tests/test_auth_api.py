from datetime import datetime, timedelta, timezone

from conftest import auth, register

from spendbox.core import rate_limit
from spendbox.core.security import create_access_token, get_password_hash, verify_password
from spendbox.db import dynamo
from spendbox.routers import auth as auth_router


def test_register_returns_token_and_public_user(client):
    token, user = register(client, email="Grace@Example.com")
    assert token
    assert user["email"] == "grace@example.com"
    assert user["firstName"] == "Ada"
    assert user["subscription"]["plan"] == "free"
    assert user["subscription"]["transactionLimit"] == 50
    assert user["preferences"]["currency"] == "USD"
    assert len(user["preferences"]["categories"]) == 10
    assert "passwordHash" not in user
    assert "linkedItems" not in user


def test_register_duplicate_email_is_conflict(client):
    register(client, email="ada@example.com")
    response = client.post(
        "/api/auth/register",
        json={"email": "ADA@example.com", "password": "password123", "firstName": "A", "lastName": "B"},
    )
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "User already exists"}


def test_register_validates_input(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "ada@example.com", "password": "short", "firstName": "Ada"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {error["field"] for error in body["errors"]}
    assert {"password", "lastName"} <= fields


def test_password_is_stored_hashed(client):
    register(client, password="password123")
    stored = dynamo.get_user_by_email("ada@example.com")
    assert stored["password_hash"] != "password123"
    assert stored["password_hash"].startswith("$2b$")


def test_register_refuses_passwords_bcrypt_would_truncate(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "ada@example.com", "password": "a" * 72 + "tail", "firstName": "Ada", "lastName": "L"},
    )
    assert response.status_code == 400
    assert [err["field"] for err in response.json()["errors"]] == ["password"]

    # Multi-byte characters count by their encoded size
    response = client.post(
        "/api/auth/register",
        json={"email": "ada@example.com", "password": "\u00e9" * 37, "firstName": "Ada", "lastName": "L"},
    )
    assert response.status_code == 400


def test_login_rejects_password_extended_past_72_bytes(client):
    register(client, password="a" * 72)
    extended = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "a" * 72 + "WRONG"})
    assert extended.status_code == 401
    exact = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "a" * 72})
    assert exact.status_code == 200


def test_verify_password_does_not_truncate():
    hashed = get_password_hash("a" * 72)
    assert verify_password("a" * 72, hashed)
    assert not verify_password("a" * 73, hashed)


def test_login_and_me(client):
    register(client)
    response = client.post("/api/auth/login", json={"email": "ADA@example.com", "password": "password123"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user"]["lastLogin"] is not None

    me = client.get("/api/auth/me", headers=auth(body["token"]))
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "ada@example.com"


def test_login_failures_share_one_message(client):
    register(client)
    wrong_password = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "nope-nope"})
    unknown_email = client.post("/api/auth/login", json={"email": "bob@example.com", "password": "password123"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"success": False, "message": "Invalid credentials"}


def test_protected_route_requires_valid_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    expired = create_access_token({"sub": "someone"}, expires_delta=timedelta(seconds=-1))
    response = client.get("/api/auth/me", headers=auth(expired))
    assert response.status_code == 401
    assert response.json()["message"] == "Token has expired"


def test_token_for_missing_user_is_rejected(client):
    token = create_access_token({"sub": "no-such-user"})
    assert client.get("/api/auth/me", headers=auth(token)).status_code == 401


def test_update_profile_merges_preferences(client, user):
    response = client.put(
        "/api/auth/profile",
        headers=user["headers"],
        json={"firstName": " Augusta ", "preferences": {"currency": "eur", "notifications": {"sms": True}}},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["firstName"] == "Augusta"
    assert data["preferences"]["currency"] == "EUR"
    assert data["preferences"]["notifications"] == {"email": True, "push": True, "sms": True}


def test_change_password(client, user):
    wrong = client.put(
        "/api/auth/password",
        headers=user["headers"],
        json={"currentPassword": "not-it-at-all", "newPassword": "newpassword1"},
    )
    assert wrong.status_code == 400
    assert wrong.json()["message"] == "Current password is incorrect"

    ok = client.put(
        "/api/auth/password",
        headers=user["headers"],
        json={"currentPassword": "password123", "newPassword": "newpassword1"},
    )
    assert ok.status_code == 200
    login = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "newpassword1"})
    assert login.status_code == 200


def test_password_reset_token_is_single_use(client, monkeypatch):
    sent = {}
    monkeypatch.setattr(auth_router, "send_password_reset_email", lambda email, token: sent.update(token=token))
    register(client)

    response = client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})
    assert response.status_code == 200
    assert response.json()["message"] == auth_router.RESET_SENT_MESSAGE
    assert "token" in sent

    stored = dynamo.get_user_by_email("ada@example.com")
    assert stored["password_reset_token"] != sent["token"]

    reset = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "brandnew123"})
    assert reset.status_code == 200
    again = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "another123"})
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired reset token"

    login = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "brandnew123"})
    assert login.status_code == 200


def test_forgot_password_hides_unknown_emails(client):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert response.status_code == 200
    assert response.json()["message"] == auth_router.RESET_SENT_MESSAGE


def test_expired_reset_token_is_rejected(client, monkeypatch):
    sent = {}
    monkeypatch.setattr(auth_router, "send_password_reset_email", lambda email, token: sent.update(token=token))
    _, user = register(client)
    client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})

    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    dynamo.update_user(user["userId"], {"password_reset_expires": past.isoformat()})

    response = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "brandnew123"})
    assert response.status_code == 400


def test_verify_email_flow(client, monkeypatch):
    sent = {}
    monkeypatch.setattr(
        auth_router, "send_verification_email", lambda email, name, token: sent.update(token=token)
    )
    token, _ = register(client)

    assert client.post("/api/auth/verify-email", json={"token": "bogus"}).status_code == 400
    assert client.post("/api/auth/verify-email", json={"token": sent["token"]}).status_code == 200

    me = client.get("/api/auth/me", headers=auth(token)).json()["data"]
    assert me["isEmailVerified"] is True

    resend = client.post("/api/auth/resend-verification", headers=auth(token))
    assert resend.status_code == 400
    assert resend.json()["message"] == "Email is already verified"


def test_auth_routes_are_rate_limited(client, monkeypatch):
    monkeypatch.setattr(rate_limit.auth_limiter, "max_requests", 2)
    payload = {"email": "ada@example.com", "password": "password123"}
    assert client.post("/api/auth/login", json=payload).status_code == 401
    assert client.post("/api/auth/login", json=payload).status_code == 401
    blocked = client.post("/api/auth/login", json=payload)
    assert blocked.status_code == 429
    assert blocked.json()["success"] is False


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Route not found"}
