from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import ValidationError

from .errors import ChronoFlowError, NotFound
from .records import Client, Milestone, Project, Record, Subtask, Task
from .state import WorkspaceState

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Record)

# running totals belong to the ledger
_READ_ONLY_FIELDS = {"id", "total_time", "created_at"}


class Catalog:
    """Clients, projects, tasks and subtasks."""

    def __init__(self, state: WorkspaceState) -> None:
        self.state = state

    def _get(self, name: str, item_id: str, label: str) -> Any:
        item = self.state.collection(name).get(item_id)
        if item is None:
            raise NotFound(f"{label} not found")
        return item

    def _put(self, name: str, item: RecordT) -> RecordT:
        with self.state.lock:
            self.state.collection(name)[item.id] = item
            self.state.persist(name)
        return item

    def _patch(self, name: str, model: Type[RecordT], item_id: str, label: str, changes: Dict[str, Any]) -> RecordT:
        with self.state.lock:
            current = self._get(name, item_id, label)
            allowed = {key: value for key, value in changes.items() if key not in _READ_ONLY_FIELDS}
            try:
                updated = model.model_validate({**current.model_dump(), **allowed})
            except ValidationError as exc:
                raise ChronoFlowError(f"Invalid {label.lower()} data: {exc.error_count()} errors") from exc
            return self._put(name, updated)

    def _remove(self, name: str, item_id: str, label: str) -> Any:
        with self.state.lock:
            item = self.state.collection(name).pop(item_id, None)
            if item is None:
                raise NotFound(f"{label} not found")
            self.state.persist(name)
        return item

    # Clients
    def list_clients(self) -> List[Client]:
        return sorted(self.state.clients.values(), key=lambda client: client.name.lower())

    def add_client(self, name: str, **fields: Any) -> Client:
        return self._put("clients", Client(name=name, **fields))

    def update_client(self, client_id: str, changes: Dict[str, Any]) -> Client:
        return self._patch("clients", Client, client_id, "Client", changes)

    def delete_client(self, client_id: str) -> Client:
        return self._remove("clients", client_id, "Client")

    # Projects
    def list_projects(self) -> List[Project]:
        return list(self.state.projects.values())

    def add_project(self, name: str, client_id: Optional[str] = None, milestones: Iterable[str] = ()) -> Project:
        project = Project(
            name=name,
            client_id=client_id,
            milestones=[Milestone(title=title) for title in milestones],
        )
        return self._put("projects", project)

    def update_project(self, project_id: str, changes: Dict[str, Any]) -> Project:
        return self._patch("projects", Project, project_id, "Project", changes)

    def delete_project(self, project_id: str) -> Project:
        return self._remove("projects", project_id, "Project")

    # Tasks
    def list_tasks(self, status: Optional[str] = None) -> List[Task]:
        tasks = sorted(self.state.tasks.values(), key=lambda task: task.created_at)
        if status:
            tasks = [task for task in tasks if task.status == status]
        return tasks

    def get_task(self, task_id: str) -> Task:
        return self._get("tasks", task_id, "Task")

    def add_task(self, title: str, **fields: Any) -> Task:
        fields = {key: value for key, value in fields.items() if key not in _READ_ONLY_FIELDS}
        return self._put("tasks", Task(title=title, **fields))

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Task:
        return self._patch("tasks", Task, task_id, "Task", changes)

    def delete_task(self, task_id: str) -> Task:
        """Delete a task and its subtasks. Sessions charged to it stay in the ledger."""
        with self.state.lock:
            task = self._remove("tasks", task_id, "Task")
            orphans = [subtask.id for subtask in self.state.subtasks.values() if subtask.task_id == task_id]
            for subtask_id in orphans:
                del self.state.subtasks[subtask_id]
            if orphans:
                self.state.persist("subtasks")
        logger.info("Deleted task %s with %d subtasks", task_id, len(orphans))
        return task

    # Subtasks
    def list_subtasks(self, task_id: str) -> List[Subtask]:
        return [subtask for subtask in self.state.subtasks.values() if subtask.task_id == task_id]

    def add_subtasks(self, task_id: str, drafts: Iterable[Dict[str, Any]]) -> List[Subtask]:
        with self.state.lock:
            self.get_task(task_id)
            created = [
                Subtask(task_id=task_id, title=draft["title"], link=draft.get("link"))
                for draft in drafts
            ]
            for subtask in created:
                self.state.subtasks[subtask.id] = subtask
            self.state.persist("subtasks")
        return created

    def update_subtask(self, subtask_id: str, changes: Dict[str, Any]) -> Subtask:
        changes = {key: value for key, value in changes.items() if key != "task_id"}
        return self._patch("subtasks", Subtask, subtask_id, "Subtask", changes)

    def delete_subtask(self, subtask_id: str) -> Subtask:
        return self._remove("subtasks", subtask_id, "Subtask")
