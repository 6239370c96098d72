import pytest
from fastapi.testclient import TestClient

from config import Settings
from credentials import CredentialService
from database import HOSTEL, InMemoryStore
from main import create_app
from storage import InMemoryImageStorage
from tracker import HostelTracker

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture()
def images():
    return InMemoryImageStorage()


@pytest.fixture()
def tracker(images):
    store = InMemoryStore()
    for name, kind in (("Alpha", "Boys"), ("Beta", "Girls")):
        store.create_document(HOSTEL, {"name": name, "type": kind, "is_active": True})
    # low bcrypt cost keeps the suite fast
    credentials = CredentialService("test-secret", expires_min=60, bcrypt_rounds=4)
    tracker = HostelTracker(store, credentials, images)
    tracker.seed_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    return tracker


@pytest.fixture()
def client(tracker):
    app = create_app(tracker=tracker, settings=Settings())
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def register(client):
    counter = {"n": 0}

    def _register(role="student", hostel="Alpha", **kwargs):
        counter["n"] += 1
        n = counter["n"]
        payload = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@example.com",
            "password": "secret123",
            "role": role,
            "hostel": hostel,
        }
        if role == "student":
            payload.update({"room_number": "12", "roll_number": f"R{n:03d}", "department": "CSE"})
        payload.update(kwargs)
        r = client.post("/api/register", json=payload)
        assert r.status_code == 201, r.text
        body = r.json()
        return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}, **body}

    return _register


@pytest.fixture()
def admin(client):
    r = client.post("/api/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    body = r.json()
    return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}, **body}


@pytest.fixture()
def file_complaint(client):
    def _file(student, **kwargs):
        data = {"title": "Leaky tap", "category": "Plumbing", "description": "Tap drips all night"}
        data.update(kwargs.pop("data", {}))
        r = client.post("/api/complaints", data=data, headers=student["headers"], **kwargs)
        assert r.status_code == 201, r.text
        return r.json()

    return _file
