"""Activity lifecycle: creation, status transitions and daily completions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Mapping, Optional

from .admin import AuditLog
from .authz import Authorizer, Caller
from .clock import FamilyClock, is_available_today
from .exceptions import (
    DailyLimitReachedError,
    ForbiddenError,
    InvalidTransitionError,
    NotAvailableTodayError,
    ValidationError,
)
from .locks import KeyedLock
from .models import (
    ACTIVITY_TRANSITIONS,
    DEFAULT_CATEGORY_POINTS,
    Activity,
    ActivityCategory,
    ActivityStatus,
    Completion,
    CompletionStatus,
    Frequency,
    Role,
    transition_role,
)
from .ops import StructuredLogger
from .store import ACTIVITIES, COMPLETIONS, Range, Store

PARENT_EDITABLE_FIELDS = frozenset(
    {"title", "description", "category", "points_value", "due_date", "frequency", "max_daily_count"}
)
CHILD_STATUS_TARGETS = frozenset({ActivityStatus.IN_PROGRESS, ActivityStatus.COMPLETED})


@dataclass(slots=True)
class DailyProgress:
    """How many times a child completed an activity on one day."""

    activity_id: int
    profile_id: str
    day: date
    today_count: int
    max_count: int
    available: bool = True

    @property
    def remaining_today(self) -> int:
        if not self.available:
            return 0
        return max(0, self.max_count - self.today_count)


@dataclass(slots=True)
class CompletionReceipt:
    """Outcome of a child completing an activity.

    ``completion`` is ``None`` for assigned one-off activities, whose own
    status records the completion.
    """

    activity: Activity
    completion: Optional[Completion] = None
    progress: Optional[DailyProgress] = None

    @property
    def message(self) -> str:
        if self.progress is None:
            return "Activity marked as completed. Waiting for a parent to verify."
        return (
            f"Activity completed! ({self.progress.today_count}/{self.progress.max_count} today)."
            " Waiting for a parent to verify."
        )


def _metadata(value: Optional[Mapping[str, Any]]) -> dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("Completion metadata must be a mapping.")
    return dict(value)


class ActivityService:
    """Create activities and move them through their lifecycle."""

    def __init__(
        self,
        store: Store,
        clock: FamilyClock,
        authorizer: Authorizer,
        *,
        logger: Optional[StructuredLogger] = None,
        audit: Optional[AuditLog] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.authorizer = authorizer
        self.logger = logger or StructuredLogger()
        self.audit = audit or AuditLog()
        self.locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Parent operations
    # ------------------------------------------------------------------
    def create_activity(
        self,
        caller: Caller,
        *,
        title: str,
        category: ActivityCategory | str = ActivityCategory.OTHER,
        points_value: Optional[int] = None,
        description: Optional[str] = None,
        assigned_to: Optional[str] = None,
        due_date: Optional[date] = None,
        frequency: Frequency | str = Frequency.ONCE,
        max_daily_count: int = 1,
    ) -> Activity:
        self.authorizer.require_parent(caller, "create activities")
        try:
            category = ActivityCategory(category)
        except ValueError as exc:
            raise ValidationError(f"Invalid category: {category!r}.") from exc
        if assigned_to is not None:
            self.authorizer.family_child(caller, assigned_to)
        now = self.clock.now()
        activity = Activity(
            family_id=caller.family_id,
            title=(title or "").strip(),
            points_value=DEFAULT_CATEGORY_POINTS[category] if points_value is None else points_value,
            created_by=caller.profile_id,
            category=category,
            description=description,
            assigned_to=assigned_to,
            due_date=due_date,
            frequency=frequency,
            max_daily_count=max_daily_count,
            created_at=now,
            updated_at=now,
        )
        stored = self.store.insert(ACTIVITIES, activity)
        self.audit.record(
            caller.profile_id,
            "activity.create",
            f"activity:{stored.id}",
            family_id=caller.family_id,
            details={"title": stored.title, "points_value": stored.points_value},
        )
        self.logger.log("activity.create", activity_id=stored.id, family_id=caller.family_id)
        return stored

    def delete_activity(self, caller: Caller, activity_id: int, *, correction: bool = False) -> None:
        """Delete an activity; verified ones only when fixing a parent's own mistake."""

        self.authorizer.require_parent(caller, "delete activities")
        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        if activity.status is ActivityStatus.VERIFIED and not correction:
            raise InvalidTransitionError(
                "Verified activities are kept for history. Delete only to correct an entry error."
            )
        self.store.delete(ACTIVITIES, activity.id)
        self.audit.record(
            caller.profile_id,
            "activity.delete",
            f"activity:{activity.id}",
            family_id=caller.family_id,
            details={"status": activity.status.value, "correction": correction},
        )
        self.logger.log("activity.delete", activity_id=activity.id, correction=correction)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_activity(self, caller: Caller, activity_id: int) -> Activity:
        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        self.authorizer.check_activity_scope(caller, activity)
        return activity

    def list_activities(
        self,
        caller: Caller,
        *,
        status: ActivityStatus | str | None = None,
        assigned_to: Optional[str] = None,
        frequency: Frequency | str | None = None,
    ) -> list[Activity]:
        filters: dict[str, Any] = {"family_id": caller.family_id}
        if status is not None:
            filters["status"] = ActivityStatus(status)
        if frequency is not None:
            filters["frequency"] = Frequency(frequency)
        if assigned_to is not None:
            filters["assigned_to"] = assigned_to
        activities = self.store.find(ACTIVITIES, filters, order_by=("created_at", "id"), descending=True)
        if caller.role is Role.CHILD:
            activities = [item for item in activities if item.assigned_to in (None, caller.profile_id)]
        return activities

    def list_completions(
        self,
        caller: Caller,
        *,
        activity_id: Optional[int] = None,
        profile_id: Optional[str] = None,
        status: CompletionStatus | str | None = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
    ) -> list[Completion]:
        filters: dict[str, Any] = {"family_id": caller.family_id}
        if caller.role is Role.CHILD or profile_id is not None:
            filters["profile_id"] = self.authorizer.resolve_subject(caller, profile_id)
        if activity_id is not None:
            filters["activity_id"] = activity_id
        if status is not None:
            filters["status"] = CompletionStatus(status)
        if since is not None or until is not None:
            filters["completed_date"] = Range(since, until)
        return self.store.find(COMPLETIONS, filters, order_by=("completed_at", "id"), descending=True)

    def today_progress(self, caller: Caller, activity_id: int, profile_id: Optional[str] = None) -> DailyProgress:
        activity = self.get_activity(caller, activity_id)
        subject = self.authorizer.resolve_subject(caller, profile_id)
        today = self.clock.today()
        return DailyProgress(
            activity_id=activity.id,
            profile_id=subject,
            day=today,
            today_count=self._count_for_day(activity.id, subject, today),
            max_count=activity.max_daily_count,
            available=is_available_today(activity.frequency, today),
        )

    # ------------------------------------------------------------------
    # Updates and transitions
    # ------------------------------------------------------------------
    def update_activity(self, caller: Caller, activity_id: int, changes: Mapping[str, Any]) -> Activity:
        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        if caller.role is Role.CHILD:
            if set(changes) - {"status"}:
                raise ForbiddenError("Children can only change the status of an activity.")
            if "status" not in changes:
                return activity
            self.authorizer.check_activity_scope(caller, activity)
            return self._child_status_change(caller, activity, changes["status"]).activity
        return self._parent_edit(caller, activity, changes)

    def start_activity(self, caller: Caller, activity_id: int) -> Activity:
        return self.update_activity(caller, activity_id, {"status": ActivityStatus.IN_PROGRESS})

    def complete_activity(
        self,
        caller: Caller,
        activity_id: int,
        *,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CompletionReceipt:
        """Record that the calling child finished an activity.

        Recurring activities create a daily completion, global one-off
        activities create a completion for this child only, and assigned
        one-off activities move to ``completed``.
        """

        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        self.authorizer.require_child(caller, "complete activities")
        self.authorizer.check_activity_scope(caller, activity)
        if activity.is_template:
            return self._record_daily_completion(caller, activity, _metadata(metadata))
        return self._child_status_change(caller, activity, ActivityStatus.COMPLETED, metadata)

    def record_completion(
        self,
        caller: Caller,
        activity_id: int,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CompletionReceipt:
        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        self.authorizer.require_child(caller, "complete activities")
        self.authorizer.check_activity_scope(caller, activity)
        if not activity.is_template:
            raise InvalidTransitionError("One-off activities are completed by updating their status.")
        return self._record_daily_completion(caller, activity, _metadata(metadata))

    def _parent_edit(self, caller: Caller, activity: Activity, changes: Mapping[str, Any]) -> Activity:
        self.authorizer.require_parent(caller, "edit activities")
        if "status" in changes:
            raise InvalidTransitionError("Parents change status only by verifying a completed activity.")
        patch = {name: value for name, value in changes.items() if name in PARENT_EDITABLE_FIELDS}
        unknown = set(changes) - PARENT_EDITABLE_FIELDS - {"assigned_to"}
        if unknown:
            raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}.")
        if "assigned_to" in changes and changes["assigned_to"] != activity.assigned_to:
            if activity.status is not ActivityStatus.PENDING:
                raise InvalidTransitionError("The assignee can only change while the activity is pending.")
            if changes["assigned_to"] is not None:
                self.authorizer.family_child(caller, changes["assigned_to"])
            patch["assigned_to"] = changes["assigned_to"]
        if not patch:
            return activity
        patch["updated_at"] = self.clock.now()
        replace(activity, **patch)  # validate before writing
        updated = self.store.update(ACTIVITIES, activity.id, patch)
        self.audit.record(
            caller.profile_id,
            "activity.update",
            f"activity:{activity.id}",
            family_id=caller.family_id,
            details={name: str(value) for name, value in patch.items() if name != "updated_at"},
        )
        return updated

    def _child_status_change(
        self,
        caller: Caller,
        activity: Activity,
        target: ActivityStatus | str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CompletionReceipt:
        try:
            target = ActivityStatus(target)
        except ValueError as exc:
            raise ValidationError(f"Invalid status: {target!r}.") from exc
        if target not in CHILD_STATUS_TARGETS:
            raise InvalidTransitionError(f"Children cannot set status to {target.value}.")
        if activity.is_template:
            raise InvalidTransitionError("Recurring activities are completed once per day, not by status.")
        if activity.is_global_one_off:
            if target is ActivityStatus.IN_PROGRESS:
                return CompletionReceipt(activity=activity)
            return self._complete_global_one_off(caller, activity, _metadata(metadata))
        if activity.status is target:
            return CompletionReceipt(activity=activity)
        if transition_role(ACTIVITY_TRANSITIONS, activity.status, target) is not Role.CHILD:
            raise InvalidTransitionError(
                f"Cannot move activity from {activity.status.value} to {target.value}."
            )
        now = self.clock.now()
        patch: dict[str, Any] = {"status": target, "updated_at": now}
        if target is ActivityStatus.COMPLETED:
            patch["completed_at"] = now
        updated = self.store.update(ACTIVITIES, activity.id, patch)
        self.logger.log(
            "activity.status",
            activity_id=activity.id,
            profile_id=caller.profile_id,
            status=target.value,
        )
        return CompletionReceipt(activity=updated)

    def _complete_global_one_off(self, caller: Caller, activity: Activity, metadata: dict) -> CompletionReceipt:
        with self.locks.hold(("completion", activity.id, caller.profile_id)):
            existing = self.store.count(COMPLETIONS, {"activity_id": activity.id, "profile_id": caller.profile_id})
            if existing:
                raise InvalidTransitionError("You already completed this activity.")
            completion = self._insert_completion(caller, activity, self.clock.today(), metadata)
        return CompletionReceipt(activity=activity, completion=completion)

    def _record_daily_completion(self, caller: Caller, activity: Activity, metadata: dict) -> CompletionReceipt:
        today = self.clock.today()
        if not is_available_today(activity.frequency, today):
            raise NotAvailableTodayError("This activity is only available on weekdays.")
        with self.locks.hold(("completion", activity.id, caller.profile_id)):
            today_count = self._count_for_day(activity.id, caller.profile_id, today)
            if today_count >= activity.max_daily_count:
                raise DailyLimitReachedError(today_count, activity.max_daily_count)
            completion = self._insert_completion(caller, activity, today, metadata)
        progress = DailyProgress(
            activity_id=activity.id,
            profile_id=caller.profile_id,
            day=today,
            today_count=today_count + 1,
            max_count=activity.max_daily_count,
        )
        return CompletionReceipt(activity=activity, completion=completion, progress=progress)

    def _insert_completion(self, caller: Caller, activity: Activity, day: date, metadata: dict) -> Completion:
        completion = self.store.insert(
            COMPLETIONS,
            Completion(
                activity_id=activity.id,
                profile_id=caller.profile_id,
                family_id=caller.family_id,
                completed_date=day,
                completed_at=self.clock.now(),
                metadata=metadata,
            ),
        )
        self.logger.log(
            "activity.completion",
            activity_id=activity.id,
            completion_id=completion.id,
            profile_id=caller.profile_id,
            completed_date=day.isoformat(),
        )
        return completion

    def _count_for_day(self, activity_id: int, profile_id: str, day: date) -> int:
        return self.store.count(
            COMPLETIONS,
            {"activity_id": activity_id, "profile_id": profile_id, "completed_date": day},
        )


__all__ = ["ActivityService", "CompletionReceipt", "DailyProgress", "PARENT_EDITABLE_FIELDS"]
