from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import SessionLocal, engine, get_db
from .errors import ChronoFlowError
from .exporter import export_timesheet
from .records import (
    ActiveTimer,
    Client,
    DayPlan,
    GhostRef,
    PersistedRef,
    PlannedActivity,
    Project,
    RecurringActivity,
    Snapshot,
    Subtask,
    Task,
    TimerSession,
)
from .schemas import (
    BackwardGapResponse,
    ClampResponse,
    ClientCreateRequest,
    ClientUpdateRequest,
    DaySummaryResponse,
    ExportRequest,
    ExportResponse,
    ForwardGapResponse,
    ImportResponse,
    NotificationListResponse,
    PlanCompleteRequest,
    PlanCreateRequest,
    PlanLogRequest,
    PlanLogResponse,
    PlanMoveRequest,
    PlanUpdateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    RuleCreateRequest,
    RuleUpdateRequest,
    SessionCreateRequest,
    SessionUpdateRequest,
    SettingsResponse,
    SubtaskCreateRequest,
    SubtaskUpdateRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
    TimerStartRequest,
    TimerStateResponse,
    TimerStopRequest,
)
from .store import KeyValueStore
from .utils import ensure_local
from .workspace import Workspace

logger = logging.getLogger(__name__)


models.Base.metadata.create_all(bind=engine)

workspace = Workspace(KeyValueStore(SessionLocal))
workspace.load()

app = FastAPI(title=settings.app_name)
app.state.workspace = workspace
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(ChronoFlowError)
async def handle_domain_error(request: Request, exc: ChronoFlowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


def _plan_log_response(result: Any) -> PlanLogResponse:
    return PlanLogResponse(plan=result.plan, session=result.session, needs_notes=result.needs_notes)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/settings", response_model=SettingsResponse)
def read_settings() -> SettingsResponse:
    return SettingsResponse(
        app_name=settings.app_name,
        environment=settings.environment,
        timezone=settings.timezone,
        block_minutes=settings.block_minutes,
        minimum_gap_minutes=settings.minimum_gap_minutes,
        day_start_hour=settings.day_start_hour,
        day_end_hour=settings.day_end_hour,
        reminder_lead_minutes=settings.reminder_lead_minutes,
        reminder_scan_seconds=settings.reminder_scan_seconds,
        daily_goal_hours=settings.daily_goal_hours,
    )


# Catalog


@app.get("/clients", response_model=list[Client])
def list_clients(ws: Workspace = Depends(get_workspace)) -> list[Client]:
    return ws.catalog.list_clients()


@app.post("/clients", response_model=Client, status_code=status.HTTP_201_CREATED)
def create_client(payload: ClientCreateRequest, ws: Workspace = Depends(get_workspace)) -> Client:
    return ws.catalog.add_client(**payload.model_dump())


@app.patch("/clients/{client_id}", response_model=Client)
def update_client(client_id: str, payload: ClientUpdateRequest, ws: Workspace = Depends(get_workspace)) -> Client:
    return ws.catalog.update_client(client_id, payload.model_dump(exclude_unset=True))


@app.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(client_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.catalog.delete_client(client_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/projects", response_model=list[Project])
def list_projects(ws: Workspace = Depends(get_workspace)) -> list[Project]:
    return ws.catalog.list_projects()


@app.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreateRequest, ws: Workspace = Depends(get_workspace)) -> Project:
    return ws.catalog.add_project(payload.name, payload.client_id, payload.milestones)


@app.patch("/projects/{project_id}", response_model=Project)
def update_project(
    project_id: str, payload: ProjectUpdateRequest, ws: Workspace = Depends(get_workspace)
) -> Project:
    return ws.catalog.update_project(project_id, payload.model_dump(exclude_unset=True))


@app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.catalog.delete_project(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/tasks", response_model=list[Task])
def list_tasks(status_filter: Optional[str] = None, ws: Workspace = Depends(get_workspace)) -> list[Task]:
    return ws.catalog.list_tasks(status_filter)


@app.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreateRequest, ws: Workspace = Depends(get_workspace)) -> Task:
    fields = payload.model_dump()
    return ws.catalog.add_task(fields.pop("title"), **fields)


@app.get("/tasks/{task_id}", response_model=Task)
def read_task(task_id: str, ws: Workspace = Depends(get_workspace)) -> Task:
    return ws.catalog.get_task(task_id)


@app.patch("/tasks/{task_id}", response_model=Task)
def update_task(task_id: str, payload: TaskUpdateRequest, ws: Workspace = Depends(get_workspace)) -> Task:
    return ws.catalog.update_task(task_id, payload.model_dump(exclude_unset=True))


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.catalog.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/tasks/{task_id}/subtasks", response_model=list[Subtask])
def list_subtasks(task_id: str, ws: Workspace = Depends(get_workspace)) -> list[Subtask]:
    return ws.catalog.list_subtasks(task_id)


@app.post("/tasks/{task_id}/subtasks", response_model=list[Subtask], status_code=status.HTTP_201_CREATED)
def create_subtasks(
    task_id: str, payload: SubtaskCreateRequest, ws: Workspace = Depends(get_workspace)
) -> list[Subtask]:
    return ws.catalog.add_subtasks(task_id, [item.model_dump() for item in payload.items])


@app.patch("/subtasks/{subtask_id}", response_model=Subtask)
def update_subtask(
    subtask_id: str, payload: SubtaskUpdateRequest, ws: Workspace = Depends(get_workspace)
) -> Subtask:
    return ws.catalog.update_subtask(subtask_id, payload.model_dump(exclude_unset=True))


@app.delete("/subtasks/{subtask_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subtask(subtask_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.catalog.delete_subtask(subtask_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Timer


@app.get("/timer", response_model=TimerStateResponse)
def timer_state(ws: Workspace = Depends(get_workspace)) -> TimerStateResponse:
    seconds, pending = ws.timer.elapsed()
    return TimerStateResponse(active_timer=ws.timer.active, elapsed_seconds=seconds, pending=pending)


@app.post("/timer/start", response_model=ActiveTimer)
def timer_start(payload: TimerStartRequest, ws: Workspace = Depends(get_workspace)) -> ActiveTimer:
    return ws.timer.start(payload.task_id, payload.subtask_id, payload.start_time, payload.notes)


@app.post("/timer/stop", response_model=TimerSession)
def timer_stop(payload: TimerStopRequest, ws: Workspace = Depends(get_workspace)) -> TimerSession:
    attribution = payload.attribution.model_dump() if payload.attribution else None
    return ws.timer.finalize(payload.notes, payload.end_time, attribution)


@app.post("/timer/cancel", response_model=ActiveTimer)
def timer_cancel(ws: Workspace = Depends(get_workspace)) -> ActiveTimer:
    return ws.timer.cancel()


# Sessions


@app.post("/sessions", response_model=TimerSession, status_code=status.HTTP_201_CREATED)
def create_session(payload: SessionCreateRequest, ws: Workspace = Depends(get_workspace)) -> TimerSession:
    session = TimerSession(is_manual_log=True, **payload.model_dump())
    return ws.ledger.add(session)


@app.get("/sessions/day/{day}", response_model=list[TimerSession])
def sessions_for_day(day: dt.date, ws: Workspace = Depends(get_workspace)) -> list[TimerSession]:
    return ws.ledger.list_for_day(day)


@app.patch("/sessions/{session_id}", response_model=TimerSession)
def update_session(
    session_id: str, payload: SessionUpdateRequest, ws: Workspace = Depends(get_workspace)
) -> TimerSession:
    return ws.ledger.update(session_id, payload.model_dump(exclude_unset=True))


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(session_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.ledger.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/restore", response_model=TimerSession)
def restore_session(session_id: str, ws: Workspace = Depends(get_workspace)) -> TimerSession:
    return ws.ledger.undo_delete(session_id)


# Plans


@app.get("/plans/day/{day}", response_model=list[DayPlan])
def plans_for_day(day: dt.date, ws: Workspace = Depends(get_workspace)) -> list[Any]:
    return ws.planner.list_for_day(day)


@app.post("/plans", response_model=PlannedActivity, status_code=status.HTTP_201_CREATED)
def create_plan(payload: PlanCreateRequest, ws: Workspace = Depends(get_workspace)) -> PlannedActivity:
    fields = payload.model_dump()
    return ws.planner.add_plan(fields.pop("start_time"), **fields)


@app.patch("/plans/{plan_id}", response_model=PlannedActivity)
def update_plan(plan_id: str, payload: PlanUpdateRequest, ws: Workspace = Depends(get_workspace)) -> PlannedActivity:
    return ws.planner.update_plan(PersistedRef(plan_id), payload.model_dump(exclude_unset=True))


@app.post("/plans/{plan_id}/move", response_model=PlannedActivity)
def move_plan(plan_id: str, payload: PlanMoveRequest, ws: Workspace = Depends(get_workspace)) -> PlannedActivity:
    return ws.planner.move_plan(PersistedRef(plan_id), payload.start_time)


@app.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(plan_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.planner.delete_plan(PersistedRef(plan_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/plans/{plan_id}/toggle-log", response_model=PlanLogResponse)
def toggle_plan_log(
    plan_id: str, payload: PlanLogRequest, ws: Workspace = Depends(get_workspace)
) -> PlanLogResponse:
    return _plan_log_response(ws.planner.toggle_log(PersistedRef(plan_id), payload.notes))


@app.post("/plans/{plan_id}/complete", response_model=PlanLogResponse)
def complete_plan_log(
    plan_id: str, payload: PlanCompleteRequest, ws: Workspace = Depends(get_workspace)
) -> PlanLogResponse:
    return _plan_log_response(ws.planner.complete_log(plan_id, payload.notes))


@app.get("/plans/ghost/{rule_id}/{day}", response_model=DayPlan)
def read_ghost(rule_id: str, day: dt.date, ws: Workspace = Depends(get_workspace)) -> Any:
    return ws.planner.resolve(GhostRef(rule_id, day))


@app.post("/plans/ghost/{rule_id}/{day}/promote", response_model=PlannedActivity)
def promote_ghost(rule_id: str, day: dt.date, ws: Workspace = Depends(get_workspace)) -> PlannedActivity:
    plan = ws.planner.promote_ghost(GhostRef(rule_id, day))
    if plan is None:
        raise HTTPException(status_code=404, detail="Recurring rule not found")
    return plan


@app.patch("/plans/ghost/{rule_id}/{day}", response_model=PlannedActivity)
def update_ghost(
    rule_id: str, day: dt.date, payload: PlanUpdateRequest, ws: Workspace = Depends(get_workspace)
) -> PlannedActivity:
    return ws.planner.update_plan(GhostRef(rule_id, day), payload.model_dump(exclude_unset=True))


@app.post("/plans/ghost/{rule_id}/{day}/move", response_model=PlannedActivity)
def move_ghost(
    rule_id: str, day: dt.date, payload: PlanMoveRequest, ws: Workspace = Depends(get_workspace)
) -> PlannedActivity:
    return ws.planner.move_plan(GhostRef(rule_id, day), payload.start_time)


@app.delete("/plans/ghost/{rule_id}/{day}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ghost(rule_id: str, day: dt.date, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.planner.delete_plan(GhostRef(rule_id, day))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/plans/ghost/{rule_id}/{day}/toggle-log", response_model=PlanLogResponse)
def toggle_ghost_log(
    rule_id: str, day: dt.date, payload: PlanLogRequest, ws: Workspace = Depends(get_workspace)
) -> PlanLogResponse:
    return _plan_log_response(ws.planner.toggle_log(GhostRef(rule_id, day), payload.notes))


# Recurring rules


@app.get("/rules", response_model=list[RecurringActivity])
def list_rules(ws: Workspace = Depends(get_workspace)) -> list[RecurringActivity]:
    return ws.planner.list_rules()


@app.post("/rules", response_model=RecurringActivity, status_code=status.HTTP_201_CREATED)
def create_rule(payload: RuleCreateRequest, ws: Workspace = Depends(get_workspace)) -> RecurringActivity:
    try:
        rule = RecurringActivity.model_validate(payload.model_dump())
    except ValidationError as exc:
        raise ChronoFlowError(f"Invalid rule data: {exc.error_count()} errors") from exc
    return ws.planner.add_rule(rule)


@app.patch("/rules/{rule_id}", response_model=RecurringActivity)
def update_rule(rule_id: str, payload: RuleUpdateRequest, ws: Workspace = Depends(get_workspace)) -> RecurringActivity:
    return ws.planner.update_rule(rule_id, payload.model_dump(exclude_unset=True))


@app.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.planner.delete_rule(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Schedule and day views


@app.get("/schedule/{day}/forward", response_model=ForwardGapResponse)
def schedule_forward(
    day: dt.date, from_time: dt.datetime, desired_minutes: int = 30, ws: Workspace = Depends(get_workspace)
) -> ForwardGapResponse:
    start = ensure_local(from_time)
    duration = ws.schedule_for_day(day).safe_duration_forward(start, desired_minutes)
    return ForwardGapResponse(from_time=start, desired_minutes=desired_minutes, duration_minutes=duration)


@app.get("/schedule/{day}/backward", response_model=BackwardGapResponse)
def schedule_backward(
    day: dt.date, to_time: dt.datetime, desired_minutes: int = 30, ws: Workspace = Depends(get_workspace)
) -> BackwardGapResponse:
    end = ensure_local(to_time)
    start, duration = ws.schedule_for_day(day).safe_window_backward(end, desired_minutes)
    return BackwardGapResponse(
        to_time=end, desired_minutes=desired_minutes, start_time=start, duration_minutes=duration
    )


@app.get("/schedule/{day}/clamp", response_model=ClampResponse)
def schedule_clamp(
    day: dt.date, start_time: dt.datetime, end_time: dt.datetime, ws: Workspace = Depends(get_workspace)
) -> ClampResponse:
    window = ws.schedule_for_day(day).clamp_manual_range(ensure_local(start_time), ensure_local(end_time))
    if window is None:
        return ClampResponse(start_time=None, end_time=None, clamped=False)
    return ClampResponse(start_time=window[0], end_time=window[1], clamped=True)


@app.get("/days/{day}/summary", response_model=DaySummaryResponse)
def day_summary(day: dt.date, ws: Workspace = Depends(get_workspace)) -> DaySummaryResponse:
    return DaySummaryResponse(**ws.day_summary(day))


@app.get("/notifications", response_model=NotificationListResponse)
def poll_notifications(ws: Workspace = Depends(get_workspace)) -> NotificationListResponse:
    return NotificationListResponse(notifications=ws.poll_notifications())


# Backup and export


@app.get("/backup", response_model=Snapshot)
def backup(ws: Workspace = Depends(get_workspace)) -> Snapshot:
    return ws.export_snapshot()


@app.post("/backup/import", response_model=ImportResponse)
def import_backup(
    strategy: str = "merge",
    payload: Any = Body(...),
    ws: Workspace = Depends(get_workspace),
) -> ImportResponse:
    collections = ws.import_snapshot(payload, strategy)
    return ImportResponse(strategy=strategy, collections=collections)


@app.post("/exports", response_model=ExportResponse, status_code=status.HTTP_201_CREATED)
def create_export(
    payload: ExportRequest,
    ws: Workspace = Depends(get_workspace),
    db: Session = Depends(get_db),
) -> ExportResponse:
    export = export_timesheet(db, ws.state, payload.format, payload.range_start, payload.range_end)
    return export


@app.get("/exports/{export_id}")
def download_export(export_id: int, db: Session = Depends(get_db)) -> Response:
    export = db.query(models.ExportRecord).filter(models.ExportRecord.id == export_id).one_or_none()
    if not export:
        raise HTTPException(status_code=404, detail="Export not found")
    path = Path(export.path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="Export file missing")
    media_types = {
        "pdf": "application/pdf",
        "csv": "text/csv",
        "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
    return FileResponse(path, media_type=media_types.get(export.format), filename=path.name)
