from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from .records import ActiveTimer, Notification, PlannedActivity, PlanType, TaskStatus, TimerSession


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class ClientCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    color: str = "#6366f1"
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    is_internal: bool = False


class ClientUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    color: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    is_internal: Optional[bool] = None


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    client_id: Optional[str] = None
    milestones: List[str] = Field(default_factory=list)


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    client_id: Optional[str] = None
    description: str = ""
    ticket_number: Optional[str] = None
    status: TaskStatus = "todo"


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    client_id: Optional[str] = None
    description: Optional[str] = None
    ticket_number: Optional[str] = None
    status: Optional[TaskStatus] = None


class SubtaskDraft(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    link: Optional[str] = None


class SubtaskCreateRequest(BaseModel):
    items: List[SubtaskDraft] = Field(..., min_length=1)


class SubtaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    is_completed: Optional[bool] = None
    link: Optional[str] = None


class AttributionPayload(BaseModel):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    client_id: Optional[str] = None
    custom_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None


class TimerStartRequest(BaseModel):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    start_time: Optional[dt.datetime] = None
    notes: Optional[str] = None


class TimerStopRequest(BaseModel):
    notes: str = ""
    end_time: Optional[dt.datetime] = None
    attribution: Optional[AttributionPayload] = None


class TimerStateResponse(BaseModel):
    active_timer: Optional[ActiveTimer]
    elapsed_seconds: int
    pending: bool


class SessionCreateRequest(AttributionPayload):
    start_time: dt.datetime
    end_time: dt.datetime
    notes: str = ""


class SessionUpdateRequest(AttributionPayload):
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    notes: Optional[str] = None


class PlanCreateRequest(BaseModel):
    start_time: dt.datetime
    duration_minutes: int = Field(default=30, ge=1)
    type: PlanType = "quick"
    task_id: Optional[str] = None
    client_id: Optional[str] = None
    quick_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None


class PlanUpdateRequest(BaseModel):
    start_time: Optional[dt.datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    type: Optional[PlanType] = None
    task_id: Optional[str] = None
    client_id: Optional[str] = None
    quick_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None


class PlanMoveRequest(BaseModel):
    start_time: dt.datetime


class PlanLogRequest(BaseModel):
    notes: Optional[str] = None


class PlanCompleteRequest(BaseModel):
    notes: str


class PlanLogResponse(BaseModel):
    plan: Optional[PlannedActivity] = None
    session: Optional[TimerSession] = None
    needs_notes: bool = False


class RuleCreateRequest(BaseModel):
    type: PlanType = "quick"
    task_id: Optional[str] = None
    client_id: Optional[str] = None
    quick_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    duration_minutes: int = Field(default=30, ge=1)
    start_time_str: str
    frequency: Literal["daily", "weekly", "fortnightly", "monthly", "monthly-nth"]
    week_days: List[int] = Field(default_factory=list)
    start_date: Optional[dt.date] = None
    month_day: Optional[int] = None
    nth_week: Optional[int] = None
    nth_week_day: Optional[int] = None


class RuleUpdateRequest(BaseModel):
    type: Optional[PlanType] = None
    task_id: Optional[str] = None
    client_id: Optional[str] = None
    quick_title: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    start_time_str: Optional[str] = None
    frequency: Optional[Literal["daily", "weekly", "fortnightly", "monthly", "monthly-nth"]] = None
    week_days: Optional[List[int]] = None
    start_date: Optional[dt.date] = None
    month_day: Optional[int] = None
    nth_week: Optional[int] = None
    nth_week_day: Optional[int] = None


class ForwardGapResponse(BaseModel):
    from_time: dt.datetime
    desired_minutes: int
    duration_minutes: int


class BackwardGapResponse(BaseModel):
    to_time: dt.datetime
    desired_minutes: int
    start_time: dt.datetime
    duration_minutes: int


class DaySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    day: dt.date
    worked_seconds: int
    planned_seconds: int
    goal_seconds: int
    remaining_seconds: int
    progress_percent: float


class NotificationListResponse(BaseModel):
    notifications: List[Notification]


class ImportResponse(BaseModel):
    strategy: str
    collections: List[str]


class ExportRequest(BaseModel):
    format: Literal["csv", "xlsx", "pdf"]
    range_start: dt.date
    range_end: dt.date


class ExportResponse(BaseModel):
    id: int
    type: str
    format: str
    range_start: dt.date
    range_end: dt.date
    created_at: dt.datetime
    path: str
    checksum: str

    model_config = ConfigDict(from_attributes=True)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "format": self.format,
            "range_start": self.range_start.isoformat(),
            "range_end": self.range_end.isoformat(),
            "created_at": _serialize_datetime(self.created_at),
            "path": self.path,
            "checksum": self.checksum,
        }


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    client_id: Optional[str] = None


class ClampResponse(BaseModel):
    start_time: Optional[dt.datetime]
    end_time: Optional[dt.datetime]
    clamped: bool


class SettingsResponse(BaseModel):
    app_name: str
    environment: str
    timezone: str
    block_minutes: int
    minimum_gap_minutes: int
    day_start_hour: int
    day_end_hour: int
    reminder_lead_minutes: int
    reminder_scan_seconds: int
    daily_goal_hours: float
