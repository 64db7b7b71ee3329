from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .errors import ChronoFlowError, InvalidAttribution, NotFound
from .ledger import SessionLedger
from .notifications import NotificationCenter
from .records import (
    PLAN_ATTRIBUTION_FIELDS,
    GhostActivity,
    GhostRef,
    PersistedRef,
    PlanRef,
    PlannedActivity,
    RecurringActivity,
    TimerSession,
)
from .recurrence import evaluate, occurrence
from .state import WorkspaceState
from .utils import LOCAL_TZ, date_key, ensure_local, now, round_to_block

logger = logging.getLogger(__name__)

DEFAULT_QUICK_NOTES = "Quick Entry"

AnyPlan = Union[PlannedActivity, GhostActivity]


@dataclass
class ToggleResult:
    plan: Optional[PlannedActivity]
    session: Optional[TimerSession] = None
    needs_notes: bool = False


def _check_plan_attribution(plan: Union[PlannedActivity, RecurringActivity]) -> None:
    if plan.type == "task" and not plan.task_id:
        raise InvalidAttribution("Task plans need a task")
    if plan.type == "project" and not plan.project_id:
        raise InvalidAttribution("Project plans need a project")


class PlanStore:
    """Persisted plans, recurring rules and the ghosts derived from them."""

    def __init__(
        self,
        state: WorkspaceState,
        ledger: SessionLedger,
        notifications: NotificationCenter,
        clock: Callable[[], dt.datetime] = now,
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.notifications = notifications
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_plan(self, plan_id: str) -> PlannedActivity:
        plan = self.state.planned_activities.get(plan_id)
        if plan is None:
            raise NotFound("Planned activity not found")
        return plan

    def get_rule(self, rule_id: str) -> RecurringActivity:
        rule = self.state.recurring_activities.get(rule_id)
        if rule is None:
            raise NotFound("Recurring rule not found")
        return rule

    def _override(self, rule_id: str, day: dt.date) -> Optional[PlannedActivity]:
        for plan in self.state.planned_activities.values():
            if plan.recurring_id == rule_id and plan.date == day:
                return plan
        return None

    def resolve(self, ref: PlanRef) -> AnyPlan:
        if isinstance(ref, PersistedRef):
            return self.get_plan(ref.plan_id)
        rule = self.get_rule(ref.rule_id)
        return self._override(rule.id, ref.day) or occurrence(rule, ref.day)

    def describe(self, plan: AnyPlan) -> str:
        if plan.quick_title:
            return plan.quick_title
        if plan.task_id and plan.task_id in self.state.tasks:
            return self.state.tasks[plan.task_id].title
        if plan.project_id and plan.project_id in self.state.projects:
            return self.state.projects[plan.project_id].name
        return "Planned activity"

    def _store(self, plan: PlannedActivity) -> PlannedActivity:
        self.state.planned_activities[plan.id] = plan
        self.state.persist("planned_activities")
        return plan

    # ------------------------------------------------------------------
    # Persisted plans
    # ------------------------------------------------------------------
    def add_plan(
        self,
        start_time: dt.datetime,
        duration_minutes: int = 30,
        type: str = "quick",
        **attribution: Any,
    ) -> PlannedActivity:
        start = ensure_local(start_time)
        plan = PlannedActivity(
            date=date_key(start),
            start_time=start,
            duration_minutes=duration_minutes,
            type=type,
            **attribution,
        )
        _check_plan_attribution(plan)
        with self.state.lock:
            return self._store(plan)

    def promote_ghost(self, ref: GhostRef) -> Optional[PlannedActivity]:
        """Persist the occurrence ``ref`` points at. ``None`` when its rule is gone."""
        with self.state.lock:
            rule = self.state.recurring_activities.get(ref.rule_id)
            if rule is None:
                logger.debug("Ignoring promotion of %s: rule no longer exists", ref)
                return None
            existing = self._override(rule.id, ref.day)
            if existing is not None:
                return existing
            plan = self._promotion(rule, ref.day)
            logger.info("Promoted occurrence of rule %s on %s to plan %s", rule.id, ref.day, plan.id)
            return self._store(plan)

    @staticmethod
    def _promotion(rule: RecurringActivity, day: dt.date) -> PlannedActivity:
        ghost = occurrence(rule, day)
        return PlannedActivity(
            date=ghost.date,
            start_time=ghost.start_time,
            duration_minutes=ghost.duration_minutes,
            recurring_id=rule.id,
            **{field: getattr(ghost, field) for field in PLAN_ATTRIBUTION_FIELDS},
        )

    def _editable(self, ref: PlanRef) -> PlannedActivity:
        """The plan behind ``ref``; a ghost yields an unsaved promotion."""
        if isinstance(ref, PersistedRef):
            return self.get_plan(ref.plan_id)
        existing = self._override(ref.rule_id, ref.day)
        if existing is not None:
            return existing
        rule = self.state.recurring_activities.get(ref.rule_id)
        if rule is None:
            raise NotFound("Recurring rule not found")
        return self._promotion(rule, ref.day)

    def update_plan(self, ref: PlanRef, changes: Dict[str, Any]) -> PlannedActivity:
        with self.state.lock:
            plan = self._editable(ref)
            allowed = {key: value for key, value in changes.items() if key not in {"id", "kind", "recurring_id", "date"}}
            if allowed.get("start_time") is not None:
                allowed["start_time"] = ensure_local(allowed["start_time"])
                allowed["date"] = date_key(allowed["start_time"])
            try:
                updated = PlannedActivity.model_validate({**plan.model_dump(), **allowed})
            except ValidationError as exc:
                raise ChronoFlowError(f"Invalid plan data: {exc.error_count()} errors") from exc
            _check_plan_attribution(updated)
            return self._store(updated)

    def move_plan(self, ref: PlanRef, new_start: dt.datetime) -> PlannedActivity:
        return self.update_plan(ref, {"start_time": new_start})

    def delete_plan(self, ref: PlanRef) -> None:
        if isinstance(ref, GhostRef):
            # a ghost has nothing of its own to delete; drop the rule behind it
            self.delete_rule(ref.rule_id)
            self.notifications.emit("rule_deleted", "Recurring rule deleted.", rule_id=ref.rule_id)
            return
        with self.state.lock:
            if self.state.planned_activities.pop(ref.plan_id, None) is None:
                raise NotFound("Planned activity not found")
            self.state.persist("planned_activities")

    # ------------------------------------------------------------------
    # Recurring rules
    # ------------------------------------------------------------------
    def add_rule(self, rule: RecurringActivity) -> RecurringActivity:
        _check_plan_attribution(rule)
        with self.state.lock:
            self.state.recurring_activities[rule.id] = rule
            self.state.persist("recurring_activities")
        return rule

    def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> RecurringActivity:
        with self.state.lock:
            rule = self.get_rule(rule_id)
            allowed = {key: value for key, value in changes.items() if key != "id"}
            try:
                updated = RecurringActivity.model_validate({**rule.model_dump(), **allowed})
            except ValidationError as exc:
                raise ChronoFlowError(f"Invalid rule data: {exc.error_count()} errors") from exc
            _check_plan_attribution(updated)
            self.state.recurring_activities[rule_id] = updated
            self.state.persist("recurring_activities")
        return updated

    def delete_rule(self, rule_id: str) -> RecurringActivity:
        """Remove a rule. Occurrences already promoted to plans stay."""
        with self.state.lock:
            rule = self.state.recurring_activities.pop(rule_id, None)
            if rule is None:
                raise NotFound("Recurring rule not found")
            self.state.persist("recurring_activities")
        return rule

    def list_rules(self) -> List[RecurringActivity]:
        return list(self.state.recurring_activities.values())

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    @staticmethod
    def _session_attribution(plan: PlannedActivity) -> Dict[str, Any]:
        if plan.type == "task":
            return {"task_id": plan.task_id, "client_id": plan.client_id, "custom_title": plan.quick_title}
        if plan.type == "project":
            return {
                "project_id": plan.project_id,
                "milestone_id": plan.milestone_id,
                "custom_title": plan.quick_title,
            }
        return {"client_id": plan.client_id, "custom_title": plan.quick_title}

    def _log(self, plan: PlannedActivity, notes: str) -> ToggleResult:
        duration = round_to_block(dt.timedelta(minutes=plan.duration_minutes))
        session = TimerSession(
            start_time=plan.start_time,
            end_time=plan.start_time + duration,
            notes=notes,
            is_manual_log=True,
            **self._session_attribution(plan),
        )
        self.ledger.add(session)
        logged = self._store(plan.model_copy(update={"is_logged": True}))
        return ToggleResult(plan=logged, session=session)

    def toggle_log(self, ref: PlanRef, notes: Optional[str] = None) -> ToggleResult:
        with self.state.lock:
            if isinstance(ref, GhostRef):
                plan = self.promote_ghost(ref)
                if plan is None:
                    return ToggleResult(plan=None)
            else:
                plan = self.get_plan(ref.plan_id)

            if plan.is_logged:
                # the session stays; removing it is a separate decision
                return ToggleResult(plan=self._store(plan.model_copy(update={"is_logged": False})))
            if plan.type == "quick":
                return self._log(plan, notes or plan.quick_title or DEFAULT_QUICK_NOTES)
            if notes is None:
                return ToggleResult(plan=plan, needs_notes=True)
            return self._log(plan, notes)

    def complete_log(self, plan_id: str, notes: str) -> ToggleResult:
        with self.state.lock:
            plan = self.get_plan(plan_id)
            if plan.is_logged:
                return ToggleResult(plan=plan)
            return self._log(plan, notes)

    # ------------------------------------------------------------------
    # Day views
    # ------------------------------------------------------------------
    def list_for_day(self, day: dt.date) -> List[AnyPlan]:
        done = {task.id for task in self.state.tasks.values() if task.status == "done"}
        day_plans = [plan for plan in self.state.planned_activities.values() if plan.date == day]
        visible: List[AnyPlan] = [
            plan for plan in day_plans if not (plan.task_id in done and not plan.is_logged)
        ]
        for rule in self.state.recurring_activities.values():
            if rule.task_id and rule.task_id in done:
                continue
            ghost = evaluate(rule, day, day_plans)
            if ghost is not None:
                visible.append(ghost)
        return sorted(visible, key=lambda plan: plan.start_time)

    def rollover_stale(self, today: dt.date) -> int:
        """Carry unlogged one-off plans from past days over to ``today``."""
        moved = 0
        with self.state.lock:
            plans = self.state.planned_activities
            for plan_id, plan in list(plans.items()):
                if plan.recurring_id or plan.is_logged or plan.date >= today:
                    continue
                start = dt.datetime.combine(today, plan.start_time.time(), tzinfo=LOCAL_TZ)
                plans[plan_id] = plan.model_copy(update={"date": today, "start_time": start})
                moved += 1
            if moved:
                self.state.persist("planned_activities")
                logger.info("Rolled %d unfinished plans over to %s", moved, today)
        return moved
