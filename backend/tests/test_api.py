from __future__ import annotations

import datetime as dt

from fastapi.testclient import TestClient


def _ts(value: str) -> dt.datetime:
    return dt.datetime.fromisoformat(value)


def test_healthz(client: TestClient):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_timer_flow_updates_task_total(client: TestClient, clock):
    task_resp = client.post("/tasks", json={"title": "Parser", "ticket_number": "CF-1"})
    assert task_resp.status_code == 201
    task_id = task_resp.json()["id"]
    assert task_resp.json()["total_time"] == 0

    start_resp = client.post("/timer/start", json={"task_id": task_id})
    assert start_resp.status_code == 200
    assert start_resp.json()["task_id"] == task_id

    clock.advance(minutes=10)
    state = client.get("/timer").json()
    assert state["elapsed_seconds"] == 600
    assert state["pending"] is False

    stop_resp = client.post("/timer/stop", json={"notes": "tokenizer"})
    assert stop_resp.status_code == 200
    session = stop_resp.json()
    assert _ts(session["end_time"]) - _ts(session["start_time"]) == dt.timedelta(minutes=12)

    assert client.get(f"/tasks/{task_id}").json()["total_time"] == 720
    assert client.get("/timer").json()["active_timer"] is None

    day_sessions = client.get("/sessions/day/2024-01-08").json()
    assert [item["id"] for item in day_sessions] == [session["id"]]


def test_task_total_is_not_writable(client: TestClient):
    task_id = client.post("/tasks", json={"title": "Parser"}).json()["id"]
    resp = client.patch(f"/tasks/{task_id}", json={"title": "Lexer", "total_time": 9999})
    assert resp.status_code == 200
    assert resp.json()["title"] == "Lexer"
    assert resp.json()["total_time"] == 0


def test_domain_errors_render_detail(client: TestClient):
    cancel = client.post("/timer/cancel")
    assert cancel.status_code == 404
    assert cancel.json() == {"detail": "No active timer"}

    bad_range = client.post(
        "/sessions",
        json={"start_time": "2024-01-08T10:00:00", "end_time": "2024-01-08T09:00:00"},
    )
    assert bad_range.status_code == 400
    assert bad_range.json()["detail"] == "End time cannot be before start time"

    assert client.delete("/sessions/missing").status_code == 404


def test_manual_session_edit_delete_and_restore(client: TestClient):
    task_id = client.post("/tasks", json={"title": "Docs"}).json()["id"]
    created = client.post(
        "/sessions",
        json={"task_id": task_id, "start_time": "2024-01-08T08:00:00", "end_time": "2024-01-08T09:00:00"},
    )
    assert created.status_code == 201
    session_id = created.json()["id"]
    assert created.json()["is_manual_log"] is True

    patched = client.patch(f"/sessions/{session_id}", json={"end_time": "2024-01-08T08:30:00"})
    assert patched.status_code == 200
    assert client.get(f"/tasks/{task_id}").json()["total_time"] == 1800

    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/tasks/{task_id}").json()["total_time"] == 0
    notifications = client.get("/notifications").json()["notifications"]
    assert notifications[0]["kind"] == "session_deleted"

    restored = client.post(f"/sessions/{session_id}/restore")
    assert restored.status_code == 200
    assert client.get(f"/tasks/{task_id}").json()["total_time"] == 1800


def test_plans_and_ghosts_over_http(client: TestClient):
    rule = client.post(
        "/rules",
        json={"frequency": "daily", "start_time_str": "14:00", "duration_minutes": 30, "quick_title": "Standup"},
    )
    assert rule.status_code == 201
    rule_id = rule.json()["id"]

    items = client.get("/plans/day/2024-01-08").json()
    assert [item["kind"] for item in items] == ["ghost"]

    logged = client.post(f"/plans/ghost/{rule_id}/2024-01-08/toggle-log", json={})
    assert logged.status_code == 200
    body = logged.json()
    assert body["needs_notes"] is False
    assert body["plan"]["recurring_id"] == rule_id
    assert body["session"]["notes"] == "Standup"

    items = client.get("/plans/day/2024-01-08").json()
    assert [(item["kind"], item["is_logged"]) for item in items] == [("persisted", True)]

    assert client.delete(f"/plans/ghost/{rule_id}/2024-01-09").status_code == 204
    assert client.get("/rules").json() == []
    assert client.get("/plans/day/2024-01-09").json() == []


def test_task_plan_requires_notes_over_http(client: TestClient):
    task_id = client.post("/tasks", json={"title": "Reviews"}).json()["id"]
    plan = client.post(
        "/plans",
        json={"start_time": "2024-01-08T15:00:00", "duration_minutes": 30, "type": "task", "task_id": task_id},
    )
    assert plan.status_code == 201
    plan_id = plan.json()["id"]

    pending = client.post(f"/plans/{plan_id}/toggle-log", json={}).json()
    assert pending["needs_notes"] is True
    assert pending["session"] is None

    done = client.post(f"/plans/{plan_id}/complete", json={"notes": "Reviewed PRs"}).json()
    assert done["plan"]["is_logged"] is True
    assert client.get(f"/tasks/{task_id}").json()["total_time"] == 1800


def test_schedule_suggestions(client: TestClient):
    client.post("/plans", json={"start_time": "2024-01-08T10:00:00", "duration_minutes": 60, "quick_title": "Block"})

    forward = client.get(
        "/schedule/2024-01-08/forward",
        params={"from_time": "2024-01-08T09:00:00", "desired_minutes": 120},
    )
    assert forward.status_code == 200
    assert forward.json()["duration_minutes"] == 60

    backward = client.get(
        "/schedule/2024-01-08/backward",
        params={"to_time": "2024-01-08T12:00:00", "desired_minutes": 30},
    ).json()
    assert backward["duration_minutes"] == 30
    assert _ts(backward["start_time"]).hour == 11
    assert _ts(backward["start_time"]).minute == 30


def test_day_summary_endpoint(client: TestClient):
    client.post("/sessions", json={"start_time": "2024-01-08T08:00:00", "end_time": "2024-01-08T10:00:00"})
    summary = client.get("/days/2024-01-08/summary")
    assert summary.status_code == 200
    assert summary.json()["worked_seconds"] == 7200


def test_backup_round_trip(client: TestClient):
    client.post("/clients", json={"name": "Acme"})
    client.post("/tasks", json={"title": "Audit"})
    backup = client.get("/backup").json()
    assert len(backup["clients"]) == 1

    client.post("/tasks", json={"title": "Extra"})
    resp = client.post("/backup/import", params={"strategy": "overwrite"}, json=backup)
    assert resp.status_code == 200
    assert "tasks" in resp.json()["collections"]
    assert [task["title"] for task in client.get("/tasks").json()] == ["Audit"]


def test_backup_import_rejects_unknown_payload(client: TestClient):
    resp = client.post("/backup/import", params={"strategy": "merge"}, json={"foo": []})
    assert resp.status_code == 400
    assert "recognizable" in resp.json()["detail"]


def test_export_create_and_download(client: TestClient):
    client.post("/sessions", json={"start_time": "2024-01-08T08:00:00", "end_time": "2024-01-08T09:00:00", "notes": "Work"})
    export = client.post(
        "/exports", json={"format": "csv", "range_start": "2024-01-08", "range_end": "2024-01-08"}
    )
    assert export.status_code == 201
    data = export.json()
    assert data["format"] == "csv"
    assert len(data["checksum"]) == 64

    download = client.get(f"/exports/{data['id']}")
    assert download.status_code == 200
    assert download.text.splitlines()[0].startswith("Ticket #")
    assert client.get("/exports/9999").status_code == 404


def test_settings_and_clamp(client: TestClient):
    assert client.get("/settings").json()["block_minutes"] == 6

    clamp = client.get(
        "/schedule/2024-01-08/clamp",
        params={"start_time": "2024-01-08T05:00:00", "end_time": "2024-01-08T07:00:00"},
    ).json()
    assert clamp["clamped"] is True
    assert _ts(clamp["start_time"]).hour == 6

    outside = client.get(
        "/schedule/2024-01-08/clamp",
        params={"start_time": "2024-01-08T19:00:00", "end_time": "2024-01-08T20:00:00"},
    ).json()
    assert outside == {"start_time": None, "end_time": None, "clamped": False}


def test_ghost_lookup_and_promotion(client: TestClient):
    rule_id = client.post(
        "/rules", json={"frequency": "weekly", "week_days": [0], "start_time_str": "08:15", "quick_title": "Plan week"}
    ).json()["id"]

    ghost = client.get(f"/plans/ghost/{rule_id}/2024-01-08").json()
    assert ghost["kind"] == "ghost"

    promoted = client.post(f"/plans/ghost/{rule_id}/2024-01-08/promote")
    assert promoted.status_code == 200
    assert client.get(f"/plans/ghost/{rule_id}/2024-01-08").json()["id"] == promoted.json()["id"]

    assert client.post("/plans/ghost/unknown/2024-01-08/promote").status_code == 404
    assert client.get("/plans/ghost/unknown/2024-01-08").status_code == 404
