from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock, RecordingNotifier
from minisocial import api
from minisocial.config import Settings
from minisocial.service import SocialService
from minisocial.storage import SnapshotFile, Store


def reset_api_state(tmp_path) -> TestClient:
    settings = Settings(
        DATA_PATH=str(tmp_path / "data.json"),
        JWT_SECRET="api-secret",
        BCRYPT_ROUNDS=4,
        NOTIFIER_WORKERS=1,
    )
    api.service = SocialService(Store(clock=FakeClock()), settings=settings, notifier=RecordingNotifier())
    return TestClient(api.app)


@pytest.fixture()
def client(tmp_path):
    client = reset_api_state(tmp_path)
    yield client
    api.service.close()
    api.service = None


def _register(client: TestClient, username: str) -> int:
    response = client.post(
        "/api/auth/register",
        json={
            "email": f"{username}@x.com",
            "username": username,
            "password": "secret-pass",
            "consent": True,
        },
    )
    assert response.status_code == 200
    return response.json()["user_id"]


def _verify(client: TestClient, user_id: int, username: str) -> None:
    api.service.dispatcher.drain()
    code = api.service.dispatcher.notifier.last_code(f"{username}@x.com")
    response = client.post("/api/auth/verify", json={"user_id": user_id, "channel": "email", "code": code})
    assert response.status_code == 200


def _login(client: TestClient, username: str) -> dict:
    response = client.post("/api/auth/login", json={"email": f"{username}@x.com", "password": "secret-pass"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _signup(client: TestClient, username: str):
    user_id = _register(client, username)
    _verify(client, user_id, username)
    return user_id, _login(client, username)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_verify_login_flow(client):
    user_id = _register(client, "alice")

    blocked = client.post("/api/auth/login", json={"email": "alice@x.com", "password": "secret-pass"})
    assert blocked.status_code == 403
    assert blocked.json()["user_id"] == user_id
    assert blocked.json()["channel"] == "email"

    wrong = client.post("/api/auth/verify", json={"user_id": user_id, "channel": "email", "code": "xxxxxx"})
    assert wrong.status_code == 400
    assert wrong.json()["reason"] == "mismatch"

    _verify(client, user_id, "alice")
    headers = _login(client, "alice")

    me = client.get("/api/me", headers=headers)
    assert me.status_code == 200
    body = me.json()
    assert body["user"]["username"] == "alice"
    assert "password_hash" not in body["user"]
    assert body["stats"] == {"followers": 0, "following": 0, "posts": 0}


def test_bad_password_and_duplicate_registration(client):
    _register(client, "alice")
    bad = client.post("/api/auth/login", json={"email": "alice@x.com", "password": "nope"})
    assert bad.status_code == 401

    duplicate = client.post(
        "/api/auth/register",
        json={"email": "alice@x.com", "username": "other", "password": "secret-pass", "consent": True},
    )
    assert duplicate.status_code == 409

    no_consent = client.post(
        "/api/auth/register",
        json={"email": "c@x.com", "username": "carol", "password": "secret-pass"},
    )
    assert no_consent.status_code == 400


def test_missing_auth_denied(client):
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/posts", headers={"Authorization": "Basic abc"}).status_code == 401


def test_tampered_bearer_rejected(client):
    _, headers = _signup(client, "alice")
    headers = {"Authorization": headers["Authorization"] + "tampered"}
    response = client.get("/api/me", headers=headers)
    assert response.status_code == 401


def test_follow_post_like_comment_notifications(client):
    alice_id, alice = _signup(client, "alice")
    bob_id, bob = _signup(client, "bob")

    assert client.post(f"/api/follows/{alice_id}", headers=bob).json() == {"following": True}
    assert client.post(f"/api/follows/{bob_id}", headers=bob).status_code == 400
    assert client.post("/api/follows/999", headers=bob).status_code == 404

    post = client.post("/api/posts", json={"content": "hello"}, headers=alice).json()["post"]
    assert client.post(f"/api/posts/{post['id']}/like", headers=bob).json() == {"liked": True}
    comment = client.post(f"/api/posts/{post['id']}/comments", json={"content": "hi"}, headers=bob)
    assert comment.status_code == 200
    assert client.post("/api/posts", json={"content": "  "}, headers=alice).status_code == 400

    posts = client.get("/api/posts", headers=bob).json()["posts"]
    assert posts[0]["like_count"] == 1
    assert posts[0]["comment_count"] == 1
    assert posts[0]["liked_by_me"] is True

    comments = client.get(f"/api/posts/{post['id']}/comments", headers=alice).json()["comments"]
    assert [c["username"] for c in comments] == ["bob"]

    notifications = client.get("/api/notifications", headers=alice).json()
    assert notifications["unread"] == 3
    assert [n["type"] for n in notifications["notifications"]] == ["comment", "like", "follow"]
    assert client.post("/api/notifications/read", headers=alice).json() == {"ok": True, "updated": 3}
    assert client.get("/api/notifications", headers=alice).json()["unread"] == 0

    profile = client.get(f"/api/users/{alice_id}", headers=bob).json()
    assert profile["is_following"] is True
    assert profile["stats"]["followers"] == 1


def test_messages_and_conversations(client):
    alice_id, alice = _signup(client, "alice")
    bob_id, bob = _signup(client, "bob")

    for text in ("one", "two", "three"):
        response = client.post(f"/api/messages/{bob_id}", json={"content": text}, headers=alice)
        assert response.status_code == 200

    thread = client.get(f"/api/messages/{alice_id}", headers=bob).json()["messages"]
    assert [m["content"] for m in thread] == ["one", "two", "three"]

    conversations = client.get("/api/conversations", headers=alice).json()["conversations"]
    assert len(conversations) == 1
    assert conversations[0]["partner"]["username"] == "bob"
    assert conversations[0]["last_message"]["content"] == "three"

    assert client.post("/api/messages/999", json={"content": "hi"}, headers=alice).status_code == 404


def test_profile_update_and_search(client):
    _, alice = _signup(client, "alice")
    _signup(client, "bob")

    updated = client.put("/api/me", json={"bio": "hello there"}, headers=alice)
    assert updated.status_code == 200
    assert updated.json()["user"]["bio"] == "hello there"
    assert client.put("/api/me", json={"username": "bob"}, headers=alice).status_code == 409

    results = client.get("/api/users/search", params={"q": "bo"}, headers=alice).json()["users"]
    assert [u["username"] for u in results] == ["bob"]
    assert results[0]["is_following"] is False


def test_verify_accepts_numeric_code(client):
    user_id = _register(client, "alice")
    api.service.dispatcher.drain()
    code = api.service.dispatcher.notifier.last_code("alice@x.com")

    response = client.post("/api/auth/verify", json={"user_id": user_id, "channel": "email", "code": int(code)})
    assert response.status_code == 200
    _login(client, "alice")


def test_persistence_failure_returns_500_and_stops_process(client, tmp_path, monkeypatch):
    terminated = []
    monkeypatch.setattr(api, "_terminate_process", lambda: terminated.append(True))
    snapshot = SnapshotFile(str(tmp_path / "broken.json"))

    def broken_save(document):
        raise OSError("disk full")

    monkeypatch.setattr(snapshot, "save", broken_save)
    monkeypatch.setattr(api.service.store, "snapshot", snapshot)

    response = client.post(
        "/api/auth/register",
        json={"email": "a@x.com", "username": "alice", "password": "secret-pass", "consent": True},
    )
    assert response.status_code == 500
    assert response.json() == {"error": "storage failure"}
    assert terminated == [True]
