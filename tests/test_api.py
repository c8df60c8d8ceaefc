from decimal import Decimal
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from conftest import FailingStorage, auth_headers
from workhub.main import app as workhub_app
from workhub.storage.factory import get_storage


def _create_work_order(client, headers, **fields):
    payload = {"title": "Office renovation", **fields}
    resp = client.post("/work-orders", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health_is_public(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "X-Request-ID" in resp.headers


def test_routes_require_bearer_token(client):
    resp = client.get("/work-orders")
    assert resp.status_code == 401
    assert resp.json()["error"] == "Not authenticated"

    resp = client.get("/work-orders", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_create_and_read_work_order(client, user):
    headers = auth_headers(user)
    created = _create_work_order(client, headers, quoted_amount="1250,5", progress=10)

    assert created["row_version"] == 1
    assert Decimal(created["quoted_amount"]) == Decimal("1250.5")

    resp = client.get(f"/work-orders/{created['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Office renovation"

    listed = client.get("/work-orders", params={"status": "open"}, headers=headers).json()
    assert [w["id"] for w in listed] == [created["id"]]


def test_invalid_payload_is_reshaped(client, user):
    resp = client.post("/work-orders", json={"title": " ", "progress": 150}, headers=auth_headers(user))

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid request"
    assert {d["field"] for d in body["details"]} == {"title", "progress"}


def test_closed_work_order_rejects_sub_status(client, user):
    headers = auth_headers(user)
    resp = client.post(
        "/work-orders", json={"title": "Office renovation", "status": "closed", "sub_status": "Installing"}, headers=headers
    )
    assert resp.status_code == 400
    assert client.get("/work-orders", headers=headers).json() == []

    created = _create_work_order(client, headers, status="closed", sub_status="  ")
    assert created["status"] == "closed"
    assert created["sub_status"] is None


def test_update_conflict_returns_current_state(client, user, other_user):
    created = _create_work_order(client, auth_headers(user))
    body = {**created, "title": "Kitchen", "row_version": 1}

    first = client.put(f"/work-orders/{created['id']}", json=body, headers=auth_headers(user))
    assert first.status_code == 200
    assert first.json()["row_version"] == 2

    stale = client.put(
        f"/work-orders/{created['id']}",
        json={**created, "title": "Bathroom", "row_version": 1},
        headers=auth_headers(other_user),
    )
    assert stale.status_code == 409
    assert stale.json()["current"]["title"] == "Kitchen"
    assert stale.json()["current"]["row_version"] == 2

    stored = client.get(f"/work-orders/{created['id']}", headers=auth_headers(user)).json()
    assert stored["title"] == "Kitchen"


def test_update_audits_field_changes(client, user):
    headers = auth_headers(user)
    created = _create_work_order(client, headers)
    client.put(
        f"/work-orders/{created['id']}",
        json={**created, "progress": 60, "row_version": 1},
        headers=headers,
    )

    history = client.get(f"/work-orders/{created['id']}/audit", headers=headers).json()
    assert [h["action"] for h in history] == ["update", "create"]
    assert history[0]["changes"]["changes"] == [{"field": "progress", "from": 0, "to": 60}]
    assert history[0]["actor"]["username"] == "mario"


def test_parent_cannot_form_cycle(client, user):
    headers = auth_headers(user)
    parent = _create_work_order(client, headers, title="Building")
    child = _create_work_order(client, headers, title="Floor 1", parent_id=parent["id"])

    resp = client.put(
        f"/work-orders/{parent['id']}",
        json={**parent, "parent_id": child["id"], "row_version": 1},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = client.put(
        f"/work-orders/{parent['id']}",
        json={**parent, "parent_id": parent["id"], "row_version": 1},
        headers=headers,
    )
    assert resp.status_code == 400


def test_audit_note_endpoint(client, user):
    headers = auth_headers(user)
    wo = _create_work_order(client, headers)

    resp = client.post(f"/work-orders/{wo['id']}/audit", json={"text": "Client called", "date": "2024-07-01"}, headers=headers)
    assert resp.status_code == 201
    assert resp.content == b""

    notes = [h for h in client.get(f"/work-orders/{wo['id']}/audit", headers=headers).json() if h["action"] == "note"]
    assert notes[0]["changes"]["text"] == "Client called"
    assert notes[0]["created_at"].startswith("2024-06-30T22:00:00")

    assert client.post(f"/work-orders/{wo['id']}/audit", json={"text": ""}, headers=headers).status_code == 400


def test_piano_pdf_version_scenario(client, user):
    headers = auth_headers(user)
    wo = _create_work_order(client, headers)
    url = f"/work-orders/{wo['id']}/attachments"

    v1 = client.post(url, files={"file": ("piano.pdf", b"%PDF-1", "application/pdf")}, headers=headers)
    v2 = client.post(url, files={"file": ("piano.pdf", b"%PDF-2", "application/pdf")}, headers=headers)
    assert v1.status_code == 201 and v2.status_code == 201
    assert v2.json()["version"] == 2
    assert v2.json()["previous_id"] == v1.json()["id"]

    resp = client.delete(f"/attachments/{v2.json()['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    visible = client.get(url, headers=headers).json()
    assert [(a["id"], a["version"], a["is_latest"]) for a in visible] == [(v1.json()["id"], 1, True)]


def test_download_url_serves_bytes(client, user):
    headers = auth_headers(user)
    wo = _create_work_order(client, headers)
    row = client.post(
        f"/work-orders/{wo['id']}/attachments",
        files={"file": ("note.txt", b"hello", "text/plain")},
        headers=headers,
    ).json()

    url = client.get(f"/attachments/{row['id']}/download", headers=headers).json()["url"]
    path = url.split("://", 1)[1].split("/", 1)[1]
    resp = client.get(f"/{path}")
    assert resp.status_code == 200
    assert resp.content == b"hello"


def test_local_files_stay_inside_the_uploads_directory(client, storage, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"top secret")

    backslashed = client.get("/files/local/%5C" + quote(str(secret).lstrip("/")))
    assert backslashed.status_code in (403, 404)
    assert b"top secret" not in backslashed.content

    climbing = client.get("/files/local/..%2F..%2Fsecret.txt")
    assert climbing.status_code == 403
    assert b"top secret" not in climbing.content

    with pytest.raises(ValueError):
        storage._get_path("../../secret.txt")


def test_deleting_work_order_removes_attachment_bytes(client, storage, user):
    headers = auth_headers(user)
    wo = _create_work_order(client, headers)
    client.post(
        f"/work-orders/{wo['id']}/attachments",
        files={"file": ("piano.pdf", b"%PDF-1", "application/pdf")},
        headers=headers,
    )
    uploaded = client.get(f"/work-orders/{wo['id']}/attachments", headers=headers).json()
    key = f"/work-orders/{wo['id']}/{uploaded[0]['stored_name']}"
    assert storage.exists(key)

    assert client.delete(f"/work-orders/{wo['id']}", headers=headers).json() == {"success": True}
    assert client.get(f"/work-orders/{wo['id']}", headers=headers).status_code == 404
    assert not storage.exists(key)


def test_tracking_thirty_seven_minute_scenario(client, clock, make_work_order, user):
    headers = auth_headers(user)
    w1 = make_work_order("W1")
    w2 = make_work_order("W2")

    started = client.post("/tracking/start", json={"work_order_id": str(w1.id)}, headers=headers)
    assert started.status_code == 201

    busy = client.post("/tracking/start", json={"work_order_id": str(w2.id)}, headers=headers)
    assert busy.status_code == 409
    assert busy.json()["active"]["id"] == started.json()["id"]

    clock.advance(minutes=37)
    active = client.get("/tracking/active", headers=headers).json()
    assert active["running_minutes"] == 37

    stopped = client.put(f"/tracking/entries/{started.json()['id']}/stop", headers=headers)
    assert stopped.status_code == 200
    assert stopped.json()["duration_minutes"] == 37

    again = client.put(f"/tracking/entries/{started.json()['id']}/stop", headers=headers)
    assert again.status_code == 409
    assert again.json()["entry"]["duration_minutes"] == 37

    assert client.get("/tracking/active", headers=headers).json() is None
    assert client.post("/tracking/start", json={"work_order_id": str(w2.id)}, headers=headers).status_code == 201


def test_stop_someone_elses_timer_is_forbidden(client, work_order, user, other_user):
    started = client.post("/tracking/start", json={"work_order_id": str(work_order.id)}, headers=auth_headers(user))
    resp = client.put(f"/tracking/entries/{started.json()['id']}/stop", headers=auth_headers(other_user))
    assert resp.status_code == 403


def test_manual_entry_and_timesheet(client, work_order, user):
    headers = auth_headers(user)
    resp = client.post(
        "/tracking/manual",
        json={"work_order_id": str(work_order.id), "date": "2024-01-10", "hours": "2,5", "note": "Survey"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["duration_minutes"] == 150

    bad = client.post(
        "/tracking/manual",
        json={"work_order_id": str(work_order.id), "date": "2024-01-10", "hours": "-2"},
        headers=headers,
    )
    assert bad.status_code == 400

    sheet = client.get(f"/tracking/work-orders/{work_order.id}/entries", headers=headers).json()
    assert sheet["total_minutes"] == 150
    assert sheet["work_order"]["id"] == str(work_order.id)
    assert sheet["entries"][0]["user_display_name"] == "Mario Tester"


def test_user_profile_update_rules(client, user, other_user, admin):
    resp = client.put(f"/users/{other_user.id}", json={"phone": "1", "row_version": 1}, headers=auth_headers(user))
    assert resp.status_code == 403

    resp = client.put(f"/users/{user.id}", json={"phone": "1", "role": "admin", "row_version": 1}, headers=auth_headers(user))
    assert resp.status_code == 403

    resp = client.put(f"/users/{user.id}", json={"phone": "+39 333", "row_version": 1}, headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.json()["row_version"] == 2

    stale = client.put(f"/users/{user.id}", json={"phone": "x", "row_version": 1}, headers=auth_headers(admin))
    assert stale.status_code == 409
    assert stale.json()["current"]["phone"] == "+39 333"

    missing_version = client.put(f"/users/{user.id}", json={"phone": "x"}, headers=auth_headers(user))
    assert missing_version.status_code == 400


def test_user_can_resend_unchanged_admin_fields(client, user, admin):
    resp = client.put(
        f"/users/{user.id}",
        json={"phone": "+39 333", "role": "user", "is_active": True, "row_version": 1},
        headers=auth_headers(user),
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "user"
    assert resp.json()["row_version"] == 2

    resp = client.put(f"/users/{user.id}", json={"is_active": False, "row_version": 2}, headers=auth_headers(user))
    assert resp.status_code == 403

    resp = client.put(f"/users/{user.id}", json={"role": "admin", "row_version": 2}, headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["role"] == "admin"


def test_fiscal_settings_admin_only(client, user, admin):
    current = client.get("/settings/fiscal", headers=auth_headers(user))
    assert current.status_code == 200
    assert current.json()["row_version"] == 1

    payload = {"vat_number": "IT01234567890", "iban": "it60 x054 2811 1010 0000 0123 456", "row_version": 1}
    assert client.put("/settings/fiscal", json=payload, headers=auth_headers(user)).status_code == 403

    updated = client.put("/settings/fiscal", json=payload, headers=auth_headers(admin))
    assert updated.status_code == 200
    assert updated.json()["iban"] == "IT60X0542811101000000123456"
    assert updated.json()["row_version"] == 2

    assert client.put("/settings/fiscal", json=payload, headers=auth_headers(admin)).status_code == 409


def test_unexpected_errors_become_generic_500(client, tmp_path, work_order, user):
    workhub_app.dependency_overrides[get_storage] = lambda: FailingStorage(str(tmp_path), fail_put=True)
    raw = TestClient(workhub_app, raise_server_exceptions=False)

    resp = raw.post(
        f"/work-orders/{work_order.id}/attachments",
        files={"file": ("piano.pdf", b"%PDF-1", "application/pdf")},
        headers=auth_headers(user),
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "code": "internal_error"}
    listed = client.get(f"/work-orders/{work_order.id}/attachments", headers=auth_headers(user)).json()
    assert listed == []
