"""
Pytest configuration for the identity service tests.

The database URL is set before the service is imported so the engine binds
to a throwaway SQLite file.
"""
import os
import uuid

os.environ["DATABASE_URL"] = "sqlite:///./test_identity.db"

import pytest
from fastapi.testclient import TestClient

from identity_platform.identity_platform.identity_service.db import Base, engine
from identity_platform.identity_platform.identity_service.email_sender import EmailSender, get_email_sender
from identity_platform.identity_platform.identity_service.main import app

PASSWORD = "Passw0rd!"


class RecordingEmailSender(EmailSender):
    """Keeps sent links and codes so tests can follow them."""

    def __init__(self):
        self.confirmation_links = []
        self.reset_codes = []

    def send_confirmation_link(self, user, email, confirmation_link):
        self.confirmation_links.append((email, confirmation_link))

    def send_password_reset_code(self, user, email, reset_code):
        self.reset_codes.append((email, reset_code))

    def last_link(self, email):
        return [link for to, link in self.confirmation_links if to == email][-1]

    def last_code(self, email):
        return [code for to, code in self.reset_codes if to == email][-1]


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def reset_database():
    # Drop all tables and recreate them before each test
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def outbox():
    sender = RecordingEmailSender()
    app.dependency_overrides[get_email_sender] = lambda: sender
    yield sender
    app.dependency_overrides.pop(get_email_sender, None)


@pytest.fixture
def email():
    return f"user_{uuid.uuid4().hex[:8]}@example.com"


def register(client, email, password=PASSWORD):
    return client.post("/identity/register", json={"email": email, "password": password})


def login(client, email, password=PASSWORD, **extra):
    return client.post("/identity/login", json={"email": email, "password": password, **extra})


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def registered(client, email):
    """A registered user's email address."""
    assert register(client, email).status_code == 200
    return email


@pytest.fixture
def tokens(client, registered):
    response = login(client, registered)
    assert response.status_code == 200
    return response.json()
