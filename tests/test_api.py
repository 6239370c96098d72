import pytest
from fastapi.testclient import TestClient


def transition(client, actor, complaint_id, status="In Progress", comment="looking into it"):
    return client.put(
        f"/api/complaints/{complaint_id}",
        json={"status": status, "comment": comment},
        headers=actor["headers"],
    )


# ---------- Registration / login ----------


def test_register_returns_token_without_password_hash(client: TestClient, register):
    student = register()
    assert student["token"]
    assert student["user"]["role"] == "student"
    assert "password_hash" not in student["user"]
    assert "password" not in student["user"]


def test_duplicate_email_is_conflict_and_first_user_survives(client: TestClient, register):
    register(email="dup@example.com")
    r = client.post("/api/register", json={
        "name": "Other", "email": "dup@example.com", "password": "secret123",
        "role": "warden", "hostel": "Beta",
    })
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    r = client.post("/api/login", json={"email": "dup@example.com", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "student"


def test_duplicate_roll_number_is_conflict(client: TestClient, register):
    register(roll_number="CS-1")
    r = client.post("/api/register", json={
        "name": "Twin", "email": "twin@example.com", "password": "secret123", "role": "student",
        "hostel": "Alpha", "room_number": "3", "roll_number": "CS-1",
    })
    assert r.status_code == 409


@pytest.mark.parametrize("overrides", [
    {"role": "admin"},
    {"hostel": "Nowhere"},
    {"roll_number": ""},
    {"password": "123"},
])
def test_register_rejects_invalid_input(client: TestClient, overrides):
    payload = {
        "name": "Sam", "email": "sam@example.com", "password": "secret123", "role": "student",
        "hostel": "Alpha", "room_number": "1", "roll_number": "R1",
    }
    payload.update(overrides)
    r = client.post("/api/register", json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_login_with_wrong_password(client: TestClient, register):
    student = register()
    r = client.post("/api/login", json={"email": student["user"]["email"], "password": "nope"})
    assert r.status_code == 401
    assert r.json()["error"] == "authentication_error"


def test_missing_and_invalid_tokens_are_401(client: TestClient):
    assert client.get("/api/complaints").status_code == 401
    r = client.get("/api/complaints", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


# ---------- Complaints ----------


def test_student_creates_complaint_in_own_hostel(client: TestClient, register, file_complaint):
    student = register(hostel="Alpha", room_number="12")
    complaint = file_complaint(student, data={"hostel": "Beta"})

    assert complaint["status"] == "Submitted"
    assert complaint["hostel"] == "Alpha"
    assert complaint["room_number"] == "12"
    assert complaint["created_by"] == {
        "id": student["id"], "name": student["user"]["name"], "email": student["user"]["email"],
    }
    assert complaint["updates"] == []
    assert [e["status"] for e in complaint["timeline"]] == ["Submitted"]
    assert complaint["timeline"][0]["updated_by"]["id"] == student["id"]


def test_room_number_can_be_overridden(client: TestClient, register, file_complaint):
    student = register(room_number="12")
    complaint = file_complaint(student, data={"room_number": "Common room"})
    assert complaint["room_number"] == "Common room"


def test_only_students_create_complaints(client: TestClient, register):
    warden = register(role="warden")
    r = client.post("/api/complaints", data={"title": "x", "category": "Other", "description": "y"},
                    headers=warden["headers"])
    assert r.status_code == 403


@pytest.mark.parametrize("data", [
    {"title": "", "category": "Plumbing", "description": "d"},
    {"title": "t", "category": "Gardening", "description": "d"},
    {"title": "t", "category": "Plumbing", "description": "   "},
])
def test_complaint_creation_validates_fields(client: TestClient, register, data):
    student = register()
    r = client.post("/api/complaints", data=data, headers=student["headers"])
    assert r.status_code == 400


def test_complaint_images_are_stored(client: TestClient, register, file_complaint, images):
    student = register()
    files = [("images", ("a.png", b"png-bytes", "image/png")), ("images", ("b.jpg", b"jpg", "image/jpeg"))]
    complaint = file_complaint(student, files=files)
    assert len(complaint["images"]) == 2
    assert len(images.images) == 2


def test_too_many_or_bad_images_are_rejected(client: TestClient, register, images):
    student = register()
    data = {"title": "t", "category": "Other", "description": "d"}
    six = [("images", (f"{i}.png", b"x", "image/png")) for i in range(6)]
    assert client.post("/api/complaints", data=data, files=six, headers=student["headers"]).status_code == 400

    bad = [("images", ("notes.pdf", b"x", "application/pdf"))]
    assert client.post("/api/complaints", data=data, files=bad, headers=student["headers"]).status_code == 400
    assert images.images == {}


def test_failed_upload_removes_already_stored_images(client: TestClient, register, images, tracker):
    student = register()
    original = images.upload
    calls = {"n": 0}

    def flaky_upload(data, filename):
        calls["n"] += 1
        if calls["n"] == 2:
            raise IOError("storage unavailable")
        return original(data, filename)

    images.upload = flaky_upload
    files = [("images", ("a.png", b"1", "image/png")), ("images", ("b.png", b"2", "image/png"))]
    r = client.post("/api/complaints", data={"title": "t", "category": "Other", "description": "d"},
                    files=files, headers=student["headers"])
    assert r.status_code == 502
    assert images.images == {}
    assert tracker.store.count_documents("complaint") == 0


def test_invalid_complaint_fields_upload_nothing(client: TestClient, register, images):
    student = register()
    calls = {"n": 0}
    original = images.upload

    def counting_upload(data, filename):
        calls["n"] += 1
        return original(data, filename)

    images.upload = counting_upload
    files = [("images", (f"{i}.png", b"x", "image/png")) for i in range(5)]
    r = client.post("/api/complaints", data={"title": "t", "category": "Gardening", "description": "d"},
                    files=files, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["details"]["field"] == "category"
    assert calls["n"] == 0
    assert images.images == {}


def test_image_count_checked_before_files_are_read(client: TestClient, register, tracker, monkeypatch):
    student = register()
    seen = []
    monkeypatch.setattr(tracker, "create_complaint", lambda *args: seen.append(args))
    six = [("images", (f"{i}.png", b"x" * 1024, "image/png")) for i in range(6)]
    r = client.post("/api/complaints", data={"title": "t", "category": "Other", "description": "d"},
                    files=six, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["details"]["field"] == "images"
    assert seen == []


def test_complaint_responses_name_the_people_involved(client: TestClient, register, file_complaint, tracker):
    student = register(name="Asha")
    warden = register(role="warden", name="Mr Rao")
    complaint = file_complaint(student)
    transition(client, warden, complaint["id"])

    body = client.get(f"/api/complaints/{complaint['id']}", headers=student["headers"]).json()
    assert body["created_by"]["name"] == "Asha"
    assert body["handled_by"] == {"id": warden["id"], "name": "Mr Rao", "email": warden["user"]["email"]}
    assert body["updates"][0]["updated_by"]["name"] == "Mr Rao"
    assert [e["updated_by"]["name"] for e in body["timeline"]] == ["Asha", "Mr Rao"]

    listed = client.get("/api/complaints", headers=warden["headers"]).json()
    assert listed[0]["created_by"]["email"] == student["user"]["email"]

    tracker.store.delete_document("user", warden["id"])
    body = client.get(f"/api/complaints/{complaint['id']}", headers=student["headers"]).json()
    assert body["handled_by"] == {"id": warden["id"], "name": None, "email": None}


def test_warden_transition_appends_update(client: TestClient, register, file_complaint):
    student = register(hostel="Alpha")
    warden = register(role="warden", hostel="Alpha")
    complaint = file_complaint(student)

    r = transition(client, warden, complaint["id"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "In Progress"
    assert body["handled_by"]["id"] == warden["id"]
    assert len(body["updates"]) == 1
    assert body["updates"][0]["updated_by"]["id"] == warden["id"]
    assert body["updates"][0]["comment"] == "looking into it"
    assert [e["status"] for e in body["timeline"]] == ["Submitted", "In Progress"]


def test_warden_from_other_hostel_cannot_transition(client: TestClient, register, file_complaint):
    student = register(hostel="Alpha")
    outsider = register(role="warden", hostel="Beta")
    complaint = file_complaint(student)

    r = transition(client, outsider, complaint["id"])
    assert r.status_code == 403
    assert r.json()["error"] == "authorization_error"

    after = client.get(f"/api/complaints/{complaint['id']}", headers=student["headers"]).json()
    assert after["status"] == "Submitted"
    assert after["updates"] == []


def test_student_cannot_read_or_transition_others_complaints(client: TestClient, register, file_complaint):
    owner = register()
    other = register()
    complaint = file_complaint(owner)

    assert client.get(f"/api/complaints/{complaint['id']}", headers=other["headers"]).status_code == 403
    assert transition(client, other, complaint["id"]).status_code == 403
    assert transition(client, owner, complaint["id"]).status_code == 403
    assert client.get(f"/api/complaints/{complaint['id']}", headers=owner["headers"]).status_code == 200


def test_admin_reads_and_transitions_any_complaint(client: TestClient, register, file_complaint, admin):
    complaint = file_complaint(register(hostel="Beta"))
    assert client.get(f"/api/complaints/{complaint['id']}", headers=admin["headers"]).status_code == 200
    r = transition(client, admin, complaint["id"], status="Rejected", comment="duplicate")
    assert r.status_code == 200
    assert r.json()["handled_by"]["id"] == admin["id"]


def test_terminal_status_blocks_further_transitions(client: TestClient, register, file_complaint):
    student = register()
    warden = register(role="warden")
    complaint = file_complaint(student)

    assert transition(client, warden, complaint["id"], status="Resolved", comment="fixed").status_code == 200
    r = transition(client, warden, complaint["id"], status="In Progress", comment="reopen")
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"


@pytest.mark.parametrize("body", [
    {"comment": "no status"},
    {"status": "Submitted", "comment": "back to start"},
    {"status": "Done", "comment": "?"},
    {"status": "Resolved", "comment": ""},
    {"status": "Resolved", "comment": "x" * 301},
])
def test_transition_input_is_validated(client: TestClient, register, file_complaint, body):
    complaint = file_complaint(register())
    warden = register(role="warden")
    r = client.put(f"/api/complaints/{complaint['id']}", json=body, headers=warden["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_unknown_complaint_is_404(client: TestClient, admin):
    r = transition(client, admin, "5f0000000000000000000000")
    assert r.status_code == 404
    assert client.get("/api/complaints/nope", headers=admin["headers"]).status_code == 404


def test_complaint_listing_is_scoped_by_role(client: TestClient, register, file_complaint, admin):
    alpha_student = register(hostel="Alpha")
    beta_student = register(hostel="Beta")
    alpha_warden = register(role="warden", hostel="Alpha")
    mine = file_complaint(alpha_student)
    file_complaint(register(hostel="Alpha"))
    file_complaint(beta_student)

    def ids(actor, **params):
        r = client.get("/api/complaints", headers=actor["headers"], params=params)
        assert r.status_code == 200
        return [c["id"] for c in r.json()]

    assert ids(alpha_student) == [mine["id"]]
    assert len(ids(alpha_warden)) == 2
    assert len(ids(admin)) == 3
    assert len(ids(admin, category="Plumbing")) == 3
    assert ids(admin, status="Resolved") == []


# ---------- Hostels ----------


def test_public_hostel_list_shows_active_only(client: TestClient, admin):
    r = client.get("/api/hostels")
    hostels = {h["name"]: h for h in r.json()}
    assert set(hostels) == {"Alpha", "Beta"}

    r = client.put(f"/api/hostels/{hostels['Beta']['id']}/toggle-status", headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["is_active"] is False
    assert [h["name"] for h in client.get("/api/hostels").json()] == ["Alpha"]


def test_hostel_management_is_admin_only(client: TestClient, register, admin):
    warden = register(role="warden")
    payload = {"name": "Gamma", "type": "Boys"}
    assert client.post("/api/hostels", json=payload, headers=warden["headers"]).status_code == 403
    r = client.post("/api/hostels", json=payload, headers=admin["headers"])
    assert r.status_code == 201
    assert client.post("/api/hostels", json=payload, headers=admin["headers"]).status_code == 409

    bad = client.post("/api/hostels", json={"name": "Delta", "type": "Mixed"}, headers=admin["headers"])
    assert bad.status_code == 400


def test_hostel_delete_and_rename_guarded_by_references(client: TestClient, register, admin):
    register(hostel="Alpha")
    by_name = {h["name"]: h["id"] for h in client.get("/api/hostels").json()}

    r = client.delete(f"/api/hostels/{by_name['Alpha']}", headers=admin["headers"])
    assert r.status_code == 409
    r = client.put(f"/api/hostels/{by_name['Alpha']}", json={"name": "Omega"}, headers=admin["headers"])
    assert r.status_code == 409

    r = client.put(f"/api/hostels/{by_name['Beta']}", json={"name": "Beta Block"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["name"] == "Beta Block"
    assert client.delete(f"/api/hostels/{by_name['Beta']}", headers=admin["headers"]).status_code == 200


def test_admin_hostel_stats(client: TestClient, register, file_complaint, admin):
    student = register(hostel="Alpha")
    warden = register(role="warden", hostel="Alpha")
    first = file_complaint(student)
    file_complaint(student)
    transition(client, warden, first["id"], status="Resolved", comment="done")

    stats = {h["name"]: h for h in client.get("/api/admin/hostels", headers=admin["headers"]).json()}
    assert stats["Alpha"]["user_count"] == 2
    assert stats["Alpha"]["complaint_count"] == 2
    assert stats["Alpha"]["active_complaint_count"] == 1
    assert stats["Beta"]["complaint_count"] == 0


# ---------- Profile & users ----------


def test_profile_update_and_change_password(client: TestClient, register):
    student = register()
    r = client.put("/api/profile", json={"name": "Renamed", "room_number": "44", "department": ""},
                   headers=student["headers"])
    assert r.status_code == 200
    assert r.json()["name"] == "Renamed"
    assert r.json()["room_number"] == "44"
    assert r.json()["department"] == "CSE"

    r = client.put("/api/change-password", json={"current_password": "wrong", "new_password": "newsecret"},
                   headers=student["headers"])
    assert r.status_code == 400
    r = client.put("/api/change-password", json={"current_password": "secret123", "new_password": "newsecret"},
                   headers=student["headers"])
    assert r.status_code == 200
    email = student["user"]["email"]
    assert client.post("/api/login", json={"email": email, "password": "newsecret"}).status_code == 200


def test_admin_user_management(client: TestClient, register, admin):
    student = register()
    assert client.get("/api/admin/users", headers=student["headers"]).status_code == 403

    users = client.get("/api/admin/users", headers=admin["headers"]).json()
    assert len(users) == 2
    assert all("password_hash" not in u for u in users)
    assert len(client.get("/api/admin/users", params={"role": "student"}, headers=admin["headers"]).json()) == 1

    r = client.put(f"/api/admin/users/{student['id']}/toggle-status", headers=admin["headers"])
    assert r.json()["is_active"] is False
    assert client.get("/api/profile", headers=student["headers"]).status_code == 401
    email = student["user"]["email"]
    assert client.post("/api/login", json={"email": email, "password": "secret123"}).status_code == 401

    client.put(f"/api/admin/users/{student['id']}/toggle-status", headers=admin["headers"])
    r = client.put(f"/api/admin/users/{student['id']}/reset-password", json={"new_password": "reset-pw"},
                   headers=admin["headers"])
    assert r.status_code == 200
    assert client.post("/api/login", json={"email": email, "password": "reset-pw"}).status_code == 200


def test_admin_cannot_deactivate_self(client: TestClient, admin):
    r = client.put(f"/api/admin/users/{admin['id']}/toggle-status", headers=admin["headers"])
    assert r.status_code == 409


# ---------- Leave requests ----------


def test_leave_request_workflow(client: TestClient, register):
    student = register(hostel="Alpha")
    warden = register(role="warden", hostel="Alpha")
    outsider = register(role="warden", hostel="Beta")

    r = client.post("/api/leave-requests", json={"from_date": "2026-11-01", "to_date": "2026-11-03",
                                                 "reason": "Family visit"}, headers=student["headers"])
    assert r.status_code == 201
    leave = r.json()
    assert leave["status"] == "pending"
    assert leave["hostel"] == "Alpha"

    assert len(client.get("/api/leave-requests", headers=warden["headers"]).json()) == 1
    assert client.get("/api/leave-requests", headers=outsider["headers"]).json() == []

    url = f"/api/leave-requests/{leave['id']}"
    assert client.put(url, json={"status": "approved"}, headers=outsider["headers"]).status_code == 403
    assert client.put(url, json={"status": "maybe"}, headers=warden["headers"]).status_code == 400
    r = client.put(url, json={"status": "approved", "comment": "ok"}, headers=warden["headers"])
    assert r.status_code == 200
    assert r.json()["decided_by"] == warden["id"]
    assert client.put(url, json={"status": "rejected"}, headers=warden["headers"]).status_code == 409


def test_leave_dates_must_be_ordered(client: TestClient, register):
    student = register()
    r = client.post("/api/leave-requests", json={"from_date": "2026-11-05", "to_date": "2026-11-01",
                                                 "reason": "x"}, headers=student["headers"])
    assert r.status_code == 400


# ---------- Attendance ----------


def test_attendance_marking_and_scoping(client: TestClient, register, admin):
    student = register(hostel="Alpha")
    other = register(hostel="Beta")
    warden = register(role="warden", hostel="Alpha")

    record = {"student_id": student["id"], "date": "2026-10-19", "status": "present"}
    assert client.post("/api/attendance", json=record, headers=warden["headers"]).status_code == 200
    record["status"] = "absent"
    r = client.post("/api/attendance", json=record, headers=warden["headers"])
    assert r.json()["status"] == "absent"

    foreign = {"student_id": other["id"], "date": "2026-10-19", "status": "present"}
    assert client.post("/api/attendance", json=foreign, headers=warden["headers"]).status_code == 403
    assert client.post("/api/attendance", json=foreign, headers=student["headers"]).status_code == 403

    mine = client.get("/api/attendance", headers=student["headers"]).json()
    assert [(a["date"], a["status"]) for a in mine] == [("2026-10-19", "absent")]
    assert client.get("/api/attendance", headers=other["headers"]).json() == []
    assert len(client.get("/api/attendance", params={"date": "2026-10-19"}, headers=admin["headers"]).json()) == 1
