from __future__ import annotations

import pytest

from organizer.auth.models import UpstreamProfile

ANA = UpstreamProfile(subject="g-123", name="Ana", email="ana@x.com")
BO = UpstreamProfile(subject="g-456", name="Bo", email="bo@x.com")


@pytest.fixture
def ana(client, login):
    login(ANA)
    return client


@pytest.mark.parametrize("path", ["/api/notes", "/api/reminders", "/api/contacts", "/api/profile"])
def test_api_requires_session(client, path) -> None:
    r = client.get(path)
    assert r.status_code == 401
    assert r.json()["message"] == "Unauthorized"


def test_notes_crud(ana) -> None:
    r = ana.post("/api/notes", json={"title": "Groceries"})
    assert r.status_code == 201
    note = r.json()
    assert note["title"] == "Groceries"
    assert note["content"] == ""

    ana.post("/api/notes", json={"title": "Second", "content": "body"})
    listed = ana.get("/api/notes").json()
    assert [n["title"] for n in listed] == ["Second", "Groceries"]

    r = ana.put(f"/api/notes/{note['id']}", json={"content": "milk, eggs"})
    assert r.status_code == 200
    assert r.json()["title"] == "Groceries"
    assert r.json()["content"] == "milk, eggs"

    assert ana.get(f"/api/notes/{note['id']}").json()["content"] == "milk, eggs"
    assert ana.delete(f"/api/notes/{note['id']}").status_code == 204
    assert ana.get(f"/api/notes/{note['id']}").status_code == 404
    assert ana.delete(f"/api/notes/{note['id']}").status_code == 404


def test_required_field_cannot_be_cleared(ana) -> None:
    note = ana.post("/api/notes", json={"title": "Keep"}).json()
    r = ana.put(f"/api/notes/{note['id']}", json={"title": None})
    assert r.status_code == 200
    assert r.json()["title"] == "Keep"


def test_null_does_not_clear_not_null_columns(ana) -> None:
    note = ana.post("/api/notes", json={"title": "Keep", "content": "body"}).json()
    r = ana.put(f"/api/notes/{note['id']}", json={"content": None})
    assert r.status_code == 200
    assert r.json()["content"] == "body"

    reminder = ana.post("/api/reminders", json={"title": "Dentist", "completed": True}).json()
    r = ana.put(f"/api/reminders/{reminder['id']}", json={"completed": None, "notes": None})
    assert r.status_code == 200
    assert r.json()["completed"] is True
    assert r.json()["notes"] is None


def test_validation_errors(ana) -> None:
    r = ana.post("/api/notes", json={"content": "no title"})
    assert r.status_code == 422
    assert r.json()["message"] == "Invalid request"
    assert ana.post("/api/reminders", json={"title": "x", "due_at": "not a date"}).status_code == 422


def test_reminders_and_contacts(ana) -> None:
    r = ana.post("/api/reminders", json={"title": "Dentist", "due_at": "2026-03-01T09:00:00Z"})
    assert r.status_code == 201
    reminder = r.json()
    assert reminder["completed"] is False
    r = ana.put(f"/api/reminders/{reminder['id']}", json={"completed": True})
    assert r.json()["completed"] is True

    r = ana.post("/api/contacts", json={"name": "Carla", "phone": "555-0100"})
    assert r.status_code == 201
    assert r.json()["email"] is None
    assert len(ana.get("/api/contacts").json()) == 1


def test_records_are_isolated_between_users(client, login) -> None:
    login(ANA)
    note = client.post("/api/notes", json={"title": "Ana's"}).json()
    client.post("/auth/logout")

    login(BO, code="code-2")
    assert client.get("/api/notes").json() == []
    assert client.get(f"/api/notes/{note['id']}").status_code == 404
    assert client.put(f"/api/notes/{note['id']}", json={"title": "mine"}).status_code == 404
    assert client.delete(f"/api/notes/{note['id']}").status_code == 404
    client.post("/auth/logout")

    login(ANA, code="code-3")
    assert client.get(f"/api/notes/{note['id']}").json()["title"] == "Ana's"


def test_profile_read_and_update(ana) -> None:
    profile = ana.get("/api/profile").json()
    assert profile["displayName"] == "Ana"
    assert "createdAt" in profile

    r = ana.put("/api/profile", json={"display_name": "Ana Maria", "photo_url": "https://p/a.png"})
    assert r.status_code == 200
    assert r.json()["displayName"] == "Ana Maria"
    assert r.json()["photoUrl"] == "https://p/a.png"
    assert ana.get("/auth/me").json()["user"]["displayName"] == "Ana Maria"

    # Blank names are ignored.
    assert ana.put("/api/profile", json={"display_name": "  "}).json()["displayName"] == "Ana Maria"


def test_profile_delete_cascades(ana, db) -> None:
    ana.post("/api/notes", json={"title": "n"})
    ana.post("/api/contacts", json={"name": "c"})

    r = ana.delete("/api/profile")
    assert r.status_code == 200
    assert db.users == {}
    assert db.sessions == {}
    assert all(rows == {} for rows in db.records.values())
    assert ana.get("/auth/me").status_code == 401
