from datetime import timedelta

from callserver import auth
from tests.conftest import auth_header


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"


def test_register_returns_token_and_user(client):
    response = client.post("/api/auth/register", json={
        "username": "alice",
        "email": "Alice@Example.com",
        "password": "secret123",
        "firstName": "Alice",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "User registered successfully"
    assert data["token"]
    user = data["user"]
    assert user["email"] == "alice@example.com"
    assert user["preferences"] == {"language": "en", "deafMode": False, "avatarStyle": "default"}
    assert user["profile"]["firstName"] == "Alice"
    assert "hashed_password" not in user


def test_register_missing_fields(client):
    response = client.post("/api/auth/register", json={"username": "alice"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Username, email, and password are required"


def test_register_short_password(client):
    response = client.post("/api/auth/register", json={
        "username": "alice", "email": "alice@example.com", "password": "123",
    })
    assert response.status_code == 400


def test_register_bad_username_length(client):
    response = client.post("/api/auth/register", json={
        "username": "al", "email": "alice@example.com", "password": "secret123",
    })
    assert response.status_code == 400


def test_register_duplicates(client, register):
    register("alice")
    same_email = client.post("/api/auth/register", json={
        "username": "alice2", "email": "alice@example.com", "password": "secret123",
    })
    assert same_email.status_code == 409
    assert same_email.json()["detail"] == "Email is already registered"

    same_name = client.post("/api/auth/register", json={
        "username": "alice", "email": "other@example.com", "password": "secret123",
    })
    assert same_name.status_code == 409
    assert same_name.json()["detail"] == "Username is already taken"


def test_login(client, register):
    register("alice")
    response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Login successful"
    assert data["user"]["isOnline"] is True


def test_login_wrong_password(client, register):
    register("alice")
    response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Email or password is incorrect"


def test_login_missing_fields(client):
    response = client.post("/api/auth/login", json={"email": "alice@example.com"})
    assert response.status_code == 400


def test_me_requires_token(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Access denied. No token provided."


def test_me_with_invalid_token(client):
    response = client.get("/api/auth/me", headers=auth_header("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token."


def test_me_with_expired_token(client, register):
    _, user = register("alice")
    token = auth.create_access_token(user["id"], user["username"], expires_delta=timedelta(minutes=-1))
    response = client.get("/api/auth/me", headers=auth_header(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired. Please log in again."


def test_me_for_deleted_user(client):
    token = auth.create_access_token(999, "ghost")
    response = client.get("/api/auth/me", headers=auth_header(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token. User not found."


def test_me_returns_current_user(client, register):
    token, user = register("alice")
    response = client.get("/api/auth/me", headers=auth_header(token))
    assert response.status_code == 200
    assert response.json()["user"]["id"] == user["id"]


def test_logout_marks_offline(client, register):
    token, _ = register("alice")
    client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    response = client.post("/api/auth/logout", headers=auth_header(token))
    assert response.status_code == 200
    me = client.get("/api/auth/me", headers=auth_header(token)).json()
    assert me["user"]["isOnline"] is False


def test_update_preferences_through_auth(client, register):
    token, _ = register("alice")
    response = client.put(
        "/api/auth/preferences",
        json={"language": "es", "deafMode": True},
        headers=auth_header(token),
    )
    assert response.status_code == 200
    prefs = response.json()["user"]["preferences"]
    assert prefs == {"language": "es", "deafMode": True, "avatarStyle": "default"}


def test_update_preferences_rejects_unknown_language(client, register):
    token, _ = register("alice")
    response = client.put("/api/auth/preferences", json={"language": "xx"}, headers=auth_header(token))
    assert response.status_code == 422


def test_password_hashing_roundtrip():
    hashed = auth.get_password_hash("secret123")
    assert hashed != "secret123"
    assert auth.verify_password("secret123", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password(None, hashed)
