import os

# Must be set before callserver.database is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("GOOGLE_TRANSLATE_API_KEY", None)

import pytest
from fastapi.testclient import TestClient

from callserver import translation_service
from callserver.database import Base, SessionLocal, engine
from callserver.main import app
from callserver.signaling import hub


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    monkeypatch.setattr(translation_service, "OPENAI_API_KEY", None)
    monkeypatch.setattr(translation_service, "GOOGLE_TRANSLATE_API_KEY", None)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    hub.connections.clear()
    hub.user_connections.clear()
    hub.rooms.clear()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    """Registers a user and returns (token, user)."""

    def _register(username, password="secret123", **extra):
        body = {"username": username, "email": f"{username}@example.com", "password": password}
        body.update(extra)
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 201, response.text
        data = response.json()
        return data["token"], data["user"]

    return _register


@pytest.fixture
def make_room(client):
    def _make_room(token, name="Standup", **settings):
        body = {"name": name}
        body.update(settings)
        response = client.post("/api/rooms/create", json=body, headers=auth_header(token))
        assert response.status_code == 201, response.text
        return response.json()["room"]

    return _make_room
