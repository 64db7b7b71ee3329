from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Dict, List, Optional, Type

from pydantic import TypeAdapter, ValidationError
from typing_extensions import Literal

from .errors import MalformedImport, PersistenceFailure
from .records import (
    ActiveTimer,
    Client,
    PlannedActivity,
    Project,
    Record,
    RecurringActivity,
    Snapshot,
    Subtask,
    Task,
    TimerSession,
)
from .store import KeyValueStore

logger = logging.getLogger(__name__)

COLLECTIONS: Dict[str, Type[Record]] = {
    "clients": Client,
    "projects": Project,
    "tasks": Task,
    "subtasks": Subtask,
    "sessions": TimerSession,
    "planned_activities": PlannedActivity,
    "recurring_activities": RecurringActivity,
}

ACTIVE_TIMER_KEY = "active_timer"

# Opaque lists kept only so a backup survives a round trip.
PASSTHROUGH = ("rocks", "custom_templates")

# A payload must carry at least one of these as a list to be accepted.
IMPORT_MARKERS = ("clients", "projects", "tasks", "sessions")

ImportStrategy = Literal["merge", "overwrite"]


def _merge_raw(current: List[Dict[str, Any]], incoming: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Union two opaque lists by their ``id`` key; entries without one are appended."""
    merged = list(current)
    positions = {item.get("id"): index for index, item in enumerate(merged) if item.get("id") is not None}
    for item in incoming:
        key = item.get("id")
        if key is not None and key in positions:
            merged[positions[key]] = item
        else:
            if key is not None:
                positions[key] = len(merged)
            merged.append(item)
    return merged


class WorkspaceState:
    """In-memory collections, hydrated from and written through to the store."""

    def __init__(self, store: KeyValueStore):
        self._lock = RLock()
        self.store = store
        self.clients: Dict[str, Client] = {}
        self.projects: Dict[str, Project] = {}
        self.tasks: Dict[str, Task] = {}
        self.subtasks: Dict[str, Subtask] = {}
        self.sessions: Dict[str, TimerSession] = {}
        self.planned_activities: Dict[str, PlannedActivity] = {}
        self.recurring_activities: Dict[str, RecurringActivity] = {}
        self.active_timer: Optional[ActiveTimer] = None
        self.passthrough: Dict[str, List[Dict[str, Any]]] = {name: [] for name in PASSTHROUGH}

    @property
    def lock(self) -> RLock:
        return self._lock

    def collection(self, name: str) -> Dict[str, Any]:
        if name not in COLLECTIONS:
            raise KeyError(name)
        return getattr(self, name)

    def load_from_store(self) -> None:
        with self._lock:
            for name, model in COLLECTIONS.items():
                setattr(self, name, self._decode(name, model, self.store.get(name)))
            for name in PASSTHROUGH:
                raw = self.store.get(name)
                self.passthrough[name] = [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
            raw_timer = self.store.get(ACTIVE_TIMER_KEY)
            self.active_timer = None
            if raw_timer is not None:
                try:
                    self.active_timer = ActiveTimer.model_validate(raw_timer)
                except ValidationError:
                    logger.warning("Discarding unreadable active timer")
        logger.info(
            "Workspace loaded: %d tasks, %d sessions, %d plans, %d rules",
            len(self.tasks),
            len(self.sessions),
            len(self.planned_activities),
            len(self.recurring_activities),
        )

    @staticmethod
    def _decode(name: str, model: Type[Record], raw: Any) -> Dict[str, Any]:
        if raw is None:
            return {}
        if not isinstance(raw, list):
            logger.warning("Ignoring %s: expected a list, got %s", name, type(raw).__name__)
            return {}
        try:
            items = TypeAdapter(List[model]).validate_python(raw)
        except ValidationError:
            logger.warning("Ignoring %s: stored records failed validation", name, exc_info=True)
            return {}
        return {item.id: item for item in items}

    def persist(self, *names: str) -> None:
        """Write the named collections back in full. Failures are only logged."""
        for name in names:
            try:
                if name == ACTIVE_TIMER_KEY:
                    if self.active_timer is None:
                        self.store.remove(ACTIVE_TIMER_KEY)
                    else:
                        self.store.set(ACTIVE_TIMER_KEY, self.active_timer.model_dump(mode="json"))
                    continue
                if name in PASSTHROUGH:
                    self.store.set(name, self.passthrough[name])
                    continue
                items = self.collection(name).values()
                self.store.set(name, [item.model_dump(mode="json") for item in items])
            except PersistenceFailure:
                logger.exception("Could not persist %s; in-memory state stays authoritative", name)

    def snapshot(self) -> Snapshot:
        with self._lock:
            collections = {name: list(self.collection(name).values()) for name in COLLECTIONS}
            extras = {name: list(self.passthrough[name]) for name in PASSTHROUGH}
            return Snapshot(**collections, **extras)

    def import_snapshot(self, payload: Any, strategy: ImportStrategy) -> List[str]:
        if strategy not in ("merge", "overwrite"):
            raise MalformedImport(f"Unknown import strategy: {strategy}")
        if not isinstance(payload, dict) or not any(isinstance(payload.get(key), list) for key in IMPORT_MARKERS):
            raise MalformedImport("Invalid data format: could not find recognizable data arrays")
        try:
            snapshot = Snapshot.model_validate(payload)
        except ValidationError as exc:
            raise MalformedImport(f"Invalid data format: {exc.error_count()} invalid entries") from exc

        with self._lock:
            touched: List[str] = []
            for name in COLLECTIONS:
                incoming = getattr(snapshot, name)
                if incoming is None:
                    continue
                if strategy == "merge":
                    merged = dict(self.collection(name))
                    merged.update((item.id, item) for item in incoming)
                else:
                    merged = {item.id: item for item in incoming}
                setattr(self, name, merged)
                touched.append(name)
            for name in PASSTHROUGH:
                incoming_raw = getattr(snapshot, name)
                if incoming_raw is None:
                    continue
                if strategy == "merge":
                    self.passthrough[name] = _merge_raw(self.passthrough[name], incoming_raw)
                else:
                    self.passthrough[name] = list(incoming_raw)
                touched.append(name)
            if strategy == "overwrite":
                # an imported snapshot cannot resume a timer safely
                self.active_timer = None
                touched.append(ACTIVE_TIMER_KEY)
            self.persist(*touched)
        logger.info("Imported snapshot (%s): %s", strategy, ", ".join(touched))
        return touched
