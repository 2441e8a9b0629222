from datetime import timedelta

import pytest
from fastapi import HTTPException

import emails
import security
from conftest import auth
from database import utcnow


def register(client, **overrides):
    body = {"name": "Riley", "email": "riley@example.com", "password": "brownies1"}
    body.update(overrides)
    return client.post("/users/register", json=body)


def test_register_sends_verification_and_notifies(client, db, sent_emails, pushed):
    res = register(client, email="Riley@Example.com")

    assert res.status_code == 201
    user = res.json()["user"]
    assert user["email"] == "riley@example.com"
    assert user["isVerified"] is False
    assert "password" not in user
    assert "verificationToken" not in user

    stored = db["user"].find_one({"email": "riley@example.com"})
    assert stored["password"] != "brownies1"
    assert sent_emails[0]["to"] == "riley@example.com"
    assert stored["verification_token"] in sent_emails[0]["html"]

    assert db["notification"].count_documents({"type": "NEW_USER"}) == 1
    assert pushed[0]["data"]["type"] == "NEW_USER"


def test_register_validation_messages(client, db):
    assert register(client, name="").json()["message"] == "Missing required fields"
    assert register(client, email="not-an-email").json()["message"] == "Invalid email format"
    short = register(client, password="abc")
    assert short.status_code == 400
    assert short.json()["message"] == "Password must be at least 6 characters"
    assert db["user"].count_documents({}) == 0


@pytest.mark.parametrize("email", ["casey@@example.com", "casey@example."])
def test_register_rejects_malformed_email(client, db, email):
    res = register(client, email=email)

    assert res.status_code == 400
    assert res.json() == {"message": "Invalid email format"}
    assert db["user"].count_documents({}) == 0


def test_register_duplicate_email_conflicts(client, customer):
    res = register(client, email="customer@example.com")
    assert res.status_code == 409


def test_register_rolls_back_when_email_fails(client, db, monkeypatch):
    def broken(*args, **kwargs):
        raise emails.EmailError("no mail today")

    monkeypatch.setattr(emails, "send_email", broken)

    res = register(client)

    assert res.status_code == 500
    assert db["user"].count_documents({}) == 0


def test_verify_then_login(client, db):
    register(client)
    token = db["user"].find_one({"email": "riley@example.com"})["verification_token"]

    blocked = client.post("/users/login", json={"email": "riley@example.com", "password": "brownies1"})
    assert blocked.status_code == 401
    assert blocked.json()["message"] == "Please verify your email before logging in"

    verified = client.get(f"/users/verify-email/{token}")
    assert verified.status_code == 200
    assert verified.json()["user"]["isVerified"] is True
    assert client.get(f"/users/verify-email/{token}").status_code == 400

    res = client.post("/users/login", json={"email": "riley@example.com", "password": "brownies1"})
    assert res.status_code == 200
    me = client.get("/users/me", headers={"Authorization": f"Bearer {res.json()['token']}"})
    assert me.json()["email"] == "riley@example.com"


def test_expired_verification_token_is_rejected(client, db):
    register(client)
    user = db["user"].find_one({"email": "riley@example.com"})
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"verification_expires": utcnow() - timedelta(minutes=1)}})

    res = client.get(f"/users/verify-email/{user['verification_token']}")

    assert res.status_code == 400
    assert res.json()["message"] == "Invalid or expired verification token"


def test_unverified_admin_may_still_log_in(client, make_user):
    make_user(email="boss@example.com", role="admin", verified=False)
    res = client.post("/users/login", json={"email": "boss@example.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"


def test_login_with_wrong_password(client, customer):
    res = client.post("/users/login", json={"email": "customer@example.com", "password": "nope-nope"})
    assert res.status_code == 401
    assert res.json() == {"message": "Invalid credentials"}


def test_bad_and_expired_tokens(client, customer, monkeypatch):
    res = client.get("/users/me", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401
    assert res.json()["message"] == "Please authenticate"

    monkeypatch.setattr(security, "JWT_EXPIRES_MIN", -1)
    expired = client.get("/users/me", headers=auth(customer))
    assert expired.status_code == 401
    assert expired.json()["message"] == "Token expired"


def test_resend_verification(client, db, customer, sent_emails):
    register(client)
    res = client.post("/users/resend-verification", json={"email": "riley@example.com"})
    assert res.status_code == 200
    assert len(sent_emails) == 2

    already = client.post("/users/resend-verification", json={"email": "customer@example.com"})
    assert already.status_code == 400
    missing = client.post("/users/resend-verification", json={"email": "ghost@example.com"})
    assert missing.status_code == 404


def test_password_reset_flow(client, db, customer, sent_emails):
    unknown = client.post("/users/forgot-password", json={"email": "ghost@example.com"})
    res = client.post("/users/forgot-password", json={"email": "customer@example.com"})
    assert unknown.json() == res.json()
    assert [m["to"] for m in sent_emails] == ["customer@example.com"]

    token = db["user"].find_one({"_id": customer["_id"]})["reset_password_token"]
    reset = client.post("/users/reset-password", json={"token": token, "newPassword": "fresh-pass"})
    assert reset.status_code == 200

    login = client.post("/users/login", json={"email": "customer@example.com", "password": "fresh-pass"})
    assert login.status_code == 200
    again = client.post("/users/reset-password", json={"token": token, "newPassword": "other-pass"})
    assert again.status_code == 400


def test_google_login_creates_verified_user(client, db, monkeypatch):
    claims = {"sub": "g-123", "email": "Gus@Example.com", "name": "Gus", "email_verified": "true"}
    monkeypatch.setattr("routes.users.verify_google_credential", lambda credential: claims)

    first = client.post("/users/google", json={"credential": "id-token"})
    second = client.post("/users/google", json={"credential": "id-token"})

    assert first.status_code == 200
    assert first.json()["user"]["isVerified"] is True
    assert first.json()["user"]["id"] == second.json()["user"]["id"]
    assert db["user"].count_documents({"email": "gus@example.com"}) == 1


def test_google_credential_rejected_by_tokeninfo(monkeypatch):
    class Rejected:
        ok = False

    monkeypatch.setattr(security.requests, "get", lambda *a, **k: Rejected())
    with pytest.raises(HTTPException) as err:
        security.verify_google_credential("bad-token")
    assert err.value.status_code == 401
