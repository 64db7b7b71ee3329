"""Domain records kept in the workspace and written to the key-value store."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing_extensions import Annotated, Literal

from .utils import ensure_local, new_id, now, parse_time_of_day

LocalDatetime = Annotated[dt.datetime, AfterValidator(ensure_local)]

TaskStatus = Literal["todo", "in-progress", "done"]
PlanType = Literal["task", "quick", "project"]
Frequency = Literal["daily", "weekly", "fortnightly", "monthly", "monthly-nth"]
NotificationKind = Literal["plan_upcoming", "session_deleted", "rule_deleted"]


class TotalsTarget(NamedTuple):
    """The entity whose running total a session feeds."""

    kind: Literal["task", "subtask"]
    id: str


class TimerTarget(NamedTuple):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None


@dataclass(frozen=True)
class PersistedRef:
    plan_id: str


@dataclass(frozen=True)
class GhostRef:
    rule_id: str
    day: dt.date


PlanRef = Union[PersistedRef, GhostRef]


class Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Client(Record):
    id: str = Field(default_factory=new_id)
    name: str
    color: str = "#6366f1"
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    is_internal: bool = False


class Milestone(Record):
    id: str = Field(default_factory=new_id)
    title: str
    is_completed: bool = False


class Project(Record):
    id: str = Field(default_factory=new_id)
    name: str
    client_id: Optional[str] = None
    milestones: List[Milestone] = Field(default_factory=list)


class Task(Record):
    id: str = Field(default_factory=new_id)
    client_id: Optional[str] = None
    title: str
    description: str = ""
    ticket_number: Optional[str] = None
    status: TaskStatus = "todo"
    total_time: int = Field(default=0, ge=0)
    created_at: LocalDatetime = Field(default_factory=now)


class Subtask(Record):
    id: str = Field(default_factory=new_id)
    task_id: str
    title: str
    is_completed: bool = False
    total_time: int = Field(default=0, ge=0)
    link: Optional[str] = None


class Attribution(Record):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    client_id: Optional[str] = None
    custom_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None

    def totals_target(self) -> Optional[TotalsTarget]:
        if self.subtask_id:
            return TotalsTarget("subtask", self.subtask_id)
        if self.task_id:
            return TotalsTarget("task", self.task_id)
        return None

    def has_attribution_conflict(self) -> bool:
        if self.project_id and self.task_id:
            return True
        if self.subtask_id and not self.task_id:
            return True
        return bool(self.milestone_id and not self.project_id)


ATTRIBUTION_FIELDS = tuple(Attribution.model_fields)


class TimerSession(Attribution):
    id: str = Field(default_factory=new_id)
    start_time: LocalDatetime
    end_time: Optional[LocalDatetime] = None
    notes: str = ""
    is_manual_log: bool = False

    @property
    def duration_seconds(self) -> int:
        if self.end_time is None:
            return 0
        return int((self.end_time - self.start_time).total_seconds())


class ActiveTimer(Record):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    start_time: LocalDatetime

    @property
    def target(self) -> TimerTarget:
        return TimerTarget(self.task_id, self.subtask_id)


class PlanFields(Record):
    type: PlanType = "quick"
    task_id: Optional[str] = None
    client_id: Optional[str] = None
    quick_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    duration_minutes: int = Field(default=30, ge=1)


PLAN_ATTRIBUTION_FIELDS = ("type", "task_id", "client_id", "quick_title", "project_id", "milestone_id")


class PlannedActivity(PlanFields):
    kind: Literal["persisted"] = "persisted"
    id: str = Field(default_factory=new_id)
    date: dt.date
    start_time: LocalDatetime
    is_logged: bool = False
    recurring_id: Optional[str] = None

    @property
    def ref(self) -> PersistedRef:
        return PersistedRef(self.id)

    @property
    def end_time(self) -> dt.datetime:
        return self.start_time + dt.timedelta(minutes=self.duration_minutes)


class GhostActivity(PlanFields):
    """A rule occurrence derived on read. Never stored."""

    kind: Literal["ghost"] = "ghost"
    recurring_id: str
    date: dt.date
    start_time: LocalDatetime
    is_logged: Literal[False] = False

    @property
    def ref(self) -> GhostRef:
        return GhostRef(self.recurring_id, self.date)

    @property
    def end_time(self) -> dt.datetime:
        return self.start_time + dt.timedelta(minutes=self.duration_minutes)


DayPlan = Annotated[Union[PlannedActivity, GhostActivity], Field(discriminator="kind")]


class RecurringActivity(PlanFields):
    id: str = Field(default_factory=new_id)
    start_time_str: str
    frequency: Frequency
    week_days: List[int] = Field(default_factory=list)
    start_date: Optional[dt.date] = None
    month_day: Optional[int] = Field(default=None, ge=1, le=31)
    nth_week: Optional[int] = Field(default=None, ge=1, le=5)
    nth_week_day: Optional[int] = Field(default=None, ge=0, le=6)

    @field_validator("start_time_str")
    @classmethod
    def _valid_time_of_day(cls, value: str) -> str:
        parsed = parse_time_of_day(value)
        return f"{parsed.hour:02d}:{parsed.minute:02d}"

    @field_validator("week_days")
    @classmethod
    def _valid_week_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("week days run from 0 (Monday) to 6 (Sunday)")
        return sorted(set(value))


class Notification(Record):
    id: str = Field(default_factory=new_id)
    kind: NotificationKind
    message: str
    created_at: LocalDatetime = Field(default_factory=now)
    payload: Dict[str, Any] = Field(default_factory=dict)


class Snapshot(Record):
    version: int = 1
    timestamp: LocalDatetime = Field(default_factory=now)
    clients: Optional[List[Client]] = None
    projects: Optional[List[Project]] = None
    tasks: Optional[List[Task]] = None
    subtasks: Optional[List[Subtask]] = None
    sessions: Optional[List[TimerSession]] = None
    planned_activities: Optional[List[PlannedActivity]] = None
    recurring_activities: Optional[List[RecurringActivity]] = None
    # carried through backups untouched; nothing in the workspace reads them
    rocks: Optional[List[Dict[str, Any]]] = None
    custom_templates: Optional[List[Dict[str, Any]]] = Field(
        default=None, validation_alias=AliasChoices("custom_templates", "customTemplates")
    )
