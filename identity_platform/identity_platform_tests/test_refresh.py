from identity_platform.identity_platform.identity_service.db import SessionLocal
from identity_platform.identity_platform.identity_service.models import AuthEvent

from .conftest import bearer


def refresh(client, token):
    return client.post("/identity/refresh", json={"refreshToken": token})


def test_refresh_returns_new_pair(client, tokens):
    response = refresh(client, tokens["refreshToken"])
    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "Bearer"
    assert body["accessToken"] and body["refreshToken"]
    assert body["accessToken"] != tokens["accessToken"]
    assert body["refreshToken"] != tokens["refreshToken"]

    # The new access token works on the protected endpoint
    assert client.get("/weatherforecast", headers=bearer(body["accessToken"])).status_code == 200


def test_refresh_rejects_garbage(client):
    response = refresh(client, "not-a-token")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_refresh_rejects_access_token(client, tokens):
    assert refresh(client, tokens["accessToken"]).status_code == 401


def test_refresh_rejected_after_password_change(client, registered, tokens):
    response = client.post(
        "/identity/manage/info",
        json={"oldPassword": "Passw0rd!", "newPassword": "N3w-passw0rd"},
        headers=bearer(tokens["accessToken"]),
    )
    assert response.status_code == 200

    assert refresh(client, tokens["refreshToken"]).status_code == 401


def test_refresh_logs_event(client, registered, tokens):
    assert refresh(client, tokens["refreshToken"]).status_code == 200

    db = SessionLocal()
    try:
        count = db.query(AuthEvent).filter(
            AuthEvent.username == registered,
            AuthEvent.event_type == "refresh"
        ).count()
        assert count == 1
    finally:
        db.close()


def test_refresh_rejects_expired_token(client, registered, monkeypatch):
    from identity_platform.identity_platform.identity_service.config import settings

    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", -1)
    expired = client.post("/identity/login", json={"email": registered, "password": "Passw0rd!"}).json()

    response = refresh(client, expired["refreshToken"])
    assert response.status_code == 401
