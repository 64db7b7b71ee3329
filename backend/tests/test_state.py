from __future__ import annotations

import pytest

from chronoflow.errors import MalformedImport
from chronoflow.records import TimerSession
from chronoflow.store import KeyValueStore
from chronoflow.workspace import Workspace


def test_store_round_trips_json(store: KeyValueStore):
    store.set("answer", {"value": 42})
    assert store.get("answer") == {"value": 42}
    store.remove("answer")
    assert store.get("answer") is None


def test_workspace_reloads_written_collections(workspace: Workspace, store, clock, at):
    client = workspace.catalog.add_client("Acme")
    task = workspace.catalog.add_task("Audit", client_id=client.id)
    workspace.ledger.add(TimerSession(task_id=task.id, start_time=at(8), end_time=at(8, 30)))

    reloaded = Workspace(store, clock)
    reloaded.load()

    assert set(reloaded.state.clients) == {client.id}
    assert reloaded.state.tasks[task.id].total_time == 1800
    assert len(reloaded.state.sessions) == 1


def test_unreadable_collections_load_empty(store: KeyValueStore, clock):
    store.set("tasks", [{"bogus": True}])
    store.set("sessions", "not a list")
    store.set("clients", [{"name": "Kept"}])

    ws = Workspace(store, clock)
    ws.load()

    assert ws.state.tasks == {}
    assert ws.state.sessions == {}
    assert [client.name for client in ws.state.clients.values()] == ["Kept"]


def test_merge_import_unions_by_id(workspace: Workspace):
    client = workspace.catalog.add_client("Acme")
    task = workspace.catalog.add_task("Audit")
    payload = {
        "tasks": [
            {**task.model_dump(mode="json"), "title": "Audit 2024"},
            {"id": "t2", "title": "Imported"},
        ]
    }

    touched = workspace.import_snapshot(payload, "merge")

    assert touched == ["tasks"]
    assert workspace.state.tasks[task.id].title == "Audit 2024"
    assert "t2" in workspace.state.tasks
    assert client.id in workspace.state.clients


def test_overwrite_import_replaces_collections_and_clears_timer(workspace: Workspace):
    workspace.catalog.add_client("Acme")
    workspace.catalog.add_task("Audit")
    workspace.timer.start()

    workspace.import_snapshot({"tasks": [{"id": "t9", "title": "Only task"}]}, "overwrite")

    assert list(workspace.state.tasks) == ["t9"]
    assert len(workspace.state.clients) == 1
    assert workspace.timer.active is None


def test_snapshot_can_be_imported_into_fresh_workspace(workspace: Workspace, session_factory, clock, at):
    task = workspace.catalog.add_task("Audit")
    workspace.ledger.add(TimerSession(task_id=task.id, start_time=at(8), end_time=at(9)))
    workspace.planner.add_plan(at(10), 30, quick_title="Call")
    snapshot = workspace.export_snapshot().model_dump(mode="json")

    other = Workspace(KeyValueStore(session_factory), clock)
    other.import_snapshot(snapshot, "overwrite")

    assert other.state.tasks[task.id].total_time == 3600
    assert len(other.state.planned_activities) == 1


@pytest.mark.parametrize(
    "payload, strategy",
    [
        ({"settings": {}}, "merge"),
        ({"tasks": "nope"}, "merge"),
        ([1, 2, 3], "overwrite"),
        ({"tasks": [{"id": "x"}]}, "merge"),
        ({"tasks": []}, "replace"),
    ],
)
def test_malformed_imports_change_nothing(workspace: Workspace, payload, strategy):
    task = workspace.catalog.add_task("Audit")
    with pytest.raises(MalformedImport):
        workspace.import_snapshot(payload, strategy)
    assert list(workspace.state.tasks) == [task.id]


def test_rocks_and_templates_survive_a_backup_round_trip(workspace: Workspace, store, clock):
    payload = {
        "tasks": [{"id": "t1", "title": "Audit"}],
        "rocks": [{"id": "r1", "title": "Ship v2"}],
        "customTemplates": [{"name": "Website", "milestones": ["Design", "Build"]}],
    }
    workspace.import_snapshot(payload, "overwrite")
    workspace.import_snapshot({"tasks": [], "rocks": [{"id": "r1", "title": "Ship v2.1"}, {"id": "r2"}]}, "merge")

    reloaded = Workspace(store, clock)
    reloaded.load()
    snapshot = reloaded.export_snapshot()

    assert snapshot.rocks == [{"id": "r1", "title": "Ship v2.1"}, {"id": "r2"}]
    assert snapshot.custom_templates == [{"name": "Website", "milestones": ["Design", "Build"]}]
