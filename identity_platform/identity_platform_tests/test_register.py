from identity_platform.identity_platform.identity_service.db import SessionLocal
from identity_platform.identity_platform.identity_service.models import AuthEvent, User

from .conftest import PASSWORD, register


def test_register_creates_user(client, email, outbox):
    response = register(client, email)
    assert response.status_code == 200
    assert response.content == b""

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).one()
        assert user.user_name == email
        assert user.normalized_email == email.upper()
        assert user.email_confirmed is False
        assert user.password_hash and user.password_hash != PASSWORD
        assert user.security_stamp
        assert user.concurrency_stamp
    finally:
        db.close()

    # A confirmation link goes out on registration
    assert len(outbox.confirmation_links) == 1
    sent_to, link = outbox.confirmation_links[0]
    assert sent_to == email
    assert "/identity/confirmEmail?" in link
    assert "userId=" in link and "code=" in link


def test_register_duplicate_email(client, email):
    assert register(client, email).status_code == 200

    # Same address in different case is the same user name
    response = register(client, email.upper())
    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["status"] == 400
    assert "DuplicateUserName" in body["errors"]


def test_register_invalid_email(client):
    response = register(client, "not-an-email")
    assert response.status_code == 400
    assert response.json()["errors"]["InvalidEmail"] == ["Email 'not-an-email' is invalid."]


def test_register_weak_password(client, email):
    response = register(client, email, password="abc")
    assert response.status_code == 400
    errors = response.json()["errors"]
    assert set(errors) == {
        "PasswordTooShort",
        "PasswordRequiresNonAlphanumeric",
        "PasswordRequiresDigit",
        "PasswordRequiresUpper",
    }


def test_register_missing_fields(client):
    # Missing required fields should return 422
    response = client.post("/identity/register", json={"email": "someone@example.com"})
    assert response.status_code == 422


def test_register_logs_event(client, email):
    assert register(client, email).status_code == 200

    db = SessionLocal()
    try:
        events = db.query(AuthEvent).filter(AuthEvent.username == email).all()
        assert [e.event_type for e in events] == ["register"]
    finally:
        db.close()
