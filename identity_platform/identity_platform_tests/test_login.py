from datetime import timedelta

import jwt

from identity_platform.identity_platform.identity_service import user_manager
from identity_platform.identity_platform.identity_service.config import settings
from identity_platform.identity_platform.identity_service.db import SessionLocal
from identity_platform.identity_platform.identity_service.models import AuthEvent

from .conftest import PASSWORD, login, register


def test_register_and_login(client, email):
    assert register(client, email).status_code == 200

    response = login(client, email)
    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "Bearer"
    assert body["expiresIn"] == settings.ACCESS_TOKEN_EXPIRE_SECONDS
    assert body["accessToken"]
    assert body["refreshToken"]
    assert body["accessToken"] != body["refreshToken"]


def test_login_email_is_case_insensitive(client, registered):
    assert login(client, registered.upper()).status_code == 200


def test_login_invalid_password(client, registered):
    response = login(client, registered, password="Wrong-passw0rd")
    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["detail"] == "Failed"


def test_login_unknown_user(client):
    response = login(client, "nobody@example.com")
    assert response.status_code == 401
    assert response.json()["detail"] == "Failed"


def test_login_lockout(client, registered):
    for _ in range(settings.LOCKOUT_MAX_FAILED_ACCESS_ATTEMPTS - 1):
        assert login(client, registered, password="Wrong-passw0rd").json()["detail"] == "Failed"

    # The attempt that reaches the limit locks the account
    response = login(client, registered, password="Wrong-passw0rd")
    assert response.json()["detail"] == "LockedOut"

    # Even the right password is refused while locked out
    response = login(client, registered)
    assert response.status_code == 401
    assert response.json()["detail"] == "LockedOut"


def test_successful_login_resets_failed_count(client, registered):
    for _ in range(settings.LOCKOUT_MAX_FAILED_ACCESS_ATTEMPTS - 1):
        login(client, registered, password="Wrong-passw0rd")
    assert login(client, registered).status_code == 200

    # Counter starts over after a successful login
    assert login(client, registered, password="Wrong-passw0rd").json()["detail"] == "Failed"


def test_login_requires_confirmed_email(client, registered, monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_CONFIRMED_EMAIL", True)
    response = login(client, registered)
    assert response.status_code == 401
    assert response.json()["detail"] == "NotAllowed"


def test_access_token_claims(client, registered):
    db = SessionLocal()
    try:
        user = user_manager.find_by_email(db, registered)
        user_manager.add_to_role(db, user, "Admin")
        user_manager.add_claim(db, user, "department", "forecasting")
        user_id = user.id
    finally:
        db.close()

    token = login(client, registered).json()["accessToken"]
    claims = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        issuer=settings.JWT_ISSUER,
    )
    assert claims["sub"] == user_id
    assert claims["email"] == registered
    assert claims["name"] == registered
    assert claims["role"] == ["Admin"]
    assert claims["department"] == "forecasting"
    assert claims["typ"] == "access"
    assert claims["exp"] - claims["iat"] == settings.ACCESS_TOKEN_EXPIRE_SECONDS


def test_login_events(client, registered):
    assert login(client, registered).status_code == 200
    assert login(client, registered, password="Wrong-passw0rd").status_code == 401

    db = SessionLocal()
    try:
        events = db.query(AuthEvent).filter(AuthEvent.username == registered).all()
        types = [e.event_type for e in events]
        assert types.count("login_success") == 1
        assert types.count("login_failure") == 1
        failure = next(e for e in events if e.event_type == "login_failure")
        assert failure.event_metadata == {"reason": "Failed"}
        assert failure.ip_address is not None
    finally:
        db.close()


def test_lockout_ends(client, registered):
    for _ in range(settings.LOCKOUT_MAX_FAILED_ACCESS_ATTEMPTS):
        login(client, registered, password="Wrong-passw0rd")
    assert login(client, registered).json()["detail"] == "LockedOut"

    # Move the lockout end into the past
    db = SessionLocal()
    try:
        user = user_manager.find_by_email(db, registered)
        user.lockout_end = user.lockout_end - timedelta(minutes=settings.LOCKOUT_DEFAULT_MINUTES + 1)
        db.commit()
    finally:
        db.close()

    assert login(client, registered).status_code == 200
