"""
Shared fixtures: an in-memory store, offline providers and an API client.
"""

import copy
import json
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import providers
import rate_limiter
from config import settings
from graph import create_learning_path_graph
from main import app, get_workflow
from store import get_store


def six_step_json(prefix: str = "Step") -> str:
    return json.dumps({
        "path": [
            {
                "title": f"{prefix} {i}",
                "description": f"Learn part {i}",
                "duration": "1 week",
                "resources": [{"title": "Docs", "url": "https://example.com"}],
                "skills": ["Python"],
            }
            for i in range(1, 7)
        ]
    })


class FakeStore:
    """Dict-backed stand-in for PathStore with the same async interface."""

    def __init__(self):
        self.users = {}
        self.paths = {}
        self._clock = datetime.now(timezone.utc) - timedelta(hours=1)

    def _now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    async def setup(self):
        pass

    async def create_user(self, username, email, name, password_hash):
        now = self._now()
        user = {
            "id": str(uuid.uuid4()),
            "username": username,
            "email": email,
            "name": name,
            "password_hash": password_hash,
            "role": "user",
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        self.users[user["id"]] = user
        return copy.deepcopy(user)

    async def get_user(self, user_id):
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def find_user_by_login(self, login):
        for user in self.users.values():
            if user["username"] == login or user["email"] == login.lower():
                return copy.deepcopy(user)
        return None

    async def find_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email.lower():
                return copy.deepcopy(user)
        return None

    async def update_user(self, user_id, **fields):
        user = self.users.get(user_id)
        if user is None:
            return None
        user.update(fields, updated_at=self._now())
        return copy.deepcopy(user)

    async def delete_user(self, user_id):
        if self.users.pop(user_id, None) is None:
            return False
        self.paths = {k: p for k, p in self.paths.items() if p["user_id"] != user_id}
        return True

    async def create_path(self, user_id, goal, skills, steps, generated_by):
        now = self._now()
        record = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "goal": goal,
            "skills": list(skills),
            "steps": copy.deepcopy(steps),
            "completed_steps": [],
            "generated_by": generated_by,
            "metadata": {},
            "created_at": now,
            "updated_at": now,
        }
        self.paths[record["id"]] = record
        return copy.deepcopy(record)

    async def list_paths(self, user_id, limit=None):
        owned = [p for p in self.paths.values() if p["user_id"] == user_id]
        owned.sort(key=lambda p: p["created_at"], reverse=True)
        return copy.deepcopy(owned[:limit] if limit is not None else owned)

    async def get_path(self, path_id, user_id):
        record = self.paths.get(path_id)
        if record is None or record["user_id"] != user_id:
            return None
        return copy.deepcopy(record)

    async def _update_path(self, path_id, user_id, **fields):
        record = self.paths.get(path_id)
        if record is None or record["user_id"] != user_id:
            return None
        record.update(copy.deepcopy(fields), updated_at=self._now())
        return copy.deepcopy(record)

    async def set_completed_steps(self, path_id, user_id, completed):
        return await self._update_path(path_id, user_id, completed_steps=list(completed))

    async def update_path_metadata(self, path_id, user_id, metadata):
        return await self._update_path(path_id, user_id, metadata=metadata)

    async def delete_path(self, path_id, user_id):
        record = self.paths.get(path_id)
        if record is None or record["user_id"] != user_id:
            return False
        del self.paths[path_id]
        return True

    async def count_paths(self, user_id=None):
        return sum(1 for p in self.paths.values() if user_id is None or p["user_id"] == user_id)

    async def recent_paths(self, limit=10):
        ordered = sorted(self.paths.values(), key=lambda p: p["created_at"], reverse=True)
        return [
            {k: p[k] for k in ("id", "goal", "skills", "generated_by", "created_at")}
            for p in ordered[:limit]
        ]

    async def popular_skills(self, limit=8):
        counts = Counter(skill for p in self.paths.values() for skill in p["skills"])
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"skill": skill, "count": count} for skill, count in ranked[:limit]]

    async def popular_goals(self, limit=8):
        counts = Counter(p["goal"] for p in self.paths.values())
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"goal": goal, "count": count} for goal, count in ranked[:limit]]


@pytest.fixture(autouse=True)
def offline_providers(monkeypatch):
    """Every live tier is unconfigured unless a test says otherwise."""

    async def unavailable(prompt, *args, **kwargs):
        raise providers.ProviderUnavailable("not configured in tests")

    monkeypatch.setattr(providers, "call_gemini_rest", unavailable)
    monkeypatch.setattr(providers, "call_gemini_sdk", unavailable)
    monkeypatch.setattr(providers, "call_openai", unavailable)
    monkeypatch.setattr(rate_limiter, "rate_limiter", None)
    monkeypatch.setattr(settings, "jwt_secret", "test-secret")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def client(store):
    workflow = create_learning_path_graph()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_workflow] = lambda: workflow
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    resp = client.post("/api/auth/register", json={
        "username": "alice",
        "email": "Alice@Example.com",
        "password": "secret123",
        "name": "Alice",
    })
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}
