"""
API tests for registration, login and profile management.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt
from psycopg.errors import UniqueViolation

from config import settings


def test_register_returns_token_and_public_user(client, store):
    resp = client.post("/api/auth/register", json={
        "username": "bob",
        "email": "Bob@Example.com",
        "password": "secret123",
    })

    assert resp.status_code == 201
    body = resp.json()
    assert body["token"]
    assert body["user"]["email"] == "bob@example.com"
    assert body["user"]["name"] == "bob"
    assert "password_hash" not in body["user"]

    stored = next(iter(store.users.values()))
    assert stored["password_hash"] != "secret123"


def test_register_rejects_duplicates_and_short_passwords(client, auth_headers):
    dup = client.post("/api/auth/register", json={
        "username": "alice2",
        "email": "alice@example.com",
        "password": "secret123",
    })
    assert dup.status_code == 400

    short = client.post("/api/auth/register", json={
        "username": "carol",
        "email": "carol@example.com",
        "password": "123",
    })
    assert short.status_code == 422


def test_login_with_username_or_email(client, auth_headers):
    by_name = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
    by_email = client.post("/api/auth/login", json={"email": "ALICE@example.com", "password": "secret123"})
    wrong = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

    assert by_name.status_code == 200
    assert by_email.status_code == 200
    assert wrong.status_code == 401


def test_login_field_accepts_username_or_email(client, auth_headers):
    by_name = client.post("/api/auth/login", json={"login": "alice", "password": "secret123"})
    by_email = client.post("/api/auth/login", json={"login": "alice@example.com", "password": "secret123"})
    missing = client.post("/api/auth/login", json={"password": "secret123"})

    assert by_name.status_code == 200
    assert by_name.json()["user"]["username"] == "alice"
    assert by_email.status_code == 200
    assert missing.status_code == 422


def test_register_race_on_unique_constraint_is_a_bad_request(client, store, monkeypatch):
    async def conflicting_insert(**kwargs):
        raise UniqueViolation("duplicate key value violates unique constraint")

    monkeypatch.setattr(store, "create_user", conflicting_insert)
    resp = client.post("/api/auth/register", json={
        "username": "erin",
        "email": "erin@example.com",
        "password": "secret123",
    })

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Username or email already registered"


def test_me_requires_valid_token(client, auth_headers):
    assert client.get("/api/auth/me").json()["detail"] == "Access token is required"

    bad = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert bad.json()["detail"].startswith("Invalid or malformed token")

    ok = client.get("/api/auth/me", headers=auth_headers)
    assert ok.status_code == 200
    assert ok.json()["user"]["username"] == "alice"


def test_expired_token_is_rejected(client, store, auth_headers):
    user_id = next(iter(store.users))
    expired = jwt.encode(
        {"sub": user_id, "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired. Please log in again."


def test_deactivated_account_is_rejected(client, store, auth_headers):
    user = next(iter(store.users.values()))
    user["is_active"] = False

    resp = client.get("/api/auth/me", headers=auth_headers)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Account is deactivated"


def test_update_profile(client, auth_headers):
    client.post("/api/auth/register", json={
        "username": "dave",
        "email": "dave@example.com",
        "password": "secret123",
    })

    taken = client.patch("/api/user/profile", json={"email": "dave@example.com"}, headers=auth_headers)
    assert taken.status_code == 400
    assert taken.json()["detail"] == "Email already in use"

    empty = client.patch("/api/user/profile", json={"name": "   "}, headers=auth_headers)
    assert empty.status_code == 400

    invalid = client.patch("/api/user/profile", json={"email": "not-an-email"}, headers=auth_headers)
    assert invalid.status_code == 422
    assert client.get("/api/auth/me", headers=auth_headers).json()["user"]["email"] == "alice@example.com"

    ok = client.patch(
        "/api/user/profile",
        json={"name": "  Alice Smith ", "email": " New@Example.com "},
        headers=auth_headers,
    )
    assert ok.status_code == 200
    assert ok.json()["user"]["name"] == "Alice Smith"
    assert ok.json()["user"]["email"] == "new@example.com"


def test_change_password(client, auth_headers):
    too_short = client.post(
        "/api/user/change-password",
        json={"current_password": "secret123", "new_password": "abc"},
        headers=auth_headers,
    )
    assert too_short.status_code == 400

    wrong = client.post(
        "/api/user/change-password",
        json={"current_password": "wrong", "new_password": "newsecret"},
        headers=auth_headers,
    )
    assert wrong.status_code == 401

    ok = client.post(
        "/api/user/change-password",
        json={"current_password": "secret123", "new_password": "newsecret"},
        headers=auth_headers,
    )
    assert ok.status_code == 200

    login = client.post("/api/auth/login", json={"username": "alice", "password": "newsecret"})
    assert login.status_code == 200


def test_delete_account_removes_user_and_paths(client, store, auth_headers):
    client.post("/api/generate", json={"skills": ["Python"], "goal": "Data Scientist"}, headers=auth_headers)
    assert len(store.paths) == 1

    wrong = client.request("DELETE", "/api/user/account", json={"password": "nope"}, headers=auth_headers)
    assert wrong.status_code == 401

    ok = client.request("DELETE", "/api/user/account", json={"password": "secret123"}, headers=auth_headers)
    assert ok.status_code == 200
    assert store.users == {}
    assert store.paths == {}


def test_profile_stats(client, auth_headers):
    created = client.post(
        "/api/generate", json={"skills": "Python, SQL", "goal": "Data Engineer"}, headers=auth_headers
    ).json()["data"]
    client.patch(f"/api/paths/{created['id']}/steps/0", headers=auth_headers)

    resp = client.get("/api/user/profile", headers=auth_headers)
    stats = resp.json()["stats"]

    assert resp.status_code == 200
    assert stats["total_paths"] == 1
    assert stats["total_steps"] == 6
    assert stats["completed_steps"] == 1
    assert stats["completion_rate"] == 17
    assert stats["account_age_days"] == 0
    assert stats["recent_paths"][0]["goal"] == "Data Engineer"
