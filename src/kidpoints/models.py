"""Domain models used by the KidPoints package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ValidationError


class Role(str, Enum):
    """Roles a family profile can hold."""

    PARENT = "parent"
    CHILD = "child"


class ActivityCategory(str, Enum):
    """Kinds of activities a parent can assign."""

    HOMEWORK = "homework"
    READING = "reading"
    PROBLEM_SOLVING = "problem-solving"
    PRACTICE = "practice"
    OTHER = "other"


DEFAULT_CATEGORY_POINTS: Mapping[ActivityCategory, int] = {
    ActivityCategory.HOMEWORK: 20,
    ActivityCategory.READING: 10,
    ActivityCategory.PROBLEM_SOLVING: 15,
    ActivityCategory.PRACTICE: 15,
    ActivityCategory.OTHER: 10,
}


class ActivityStatus(str, Enum):
    """Lifecycle of a one-off activity."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"


class Frequency(str, Enum):
    """How often an activity can be completed."""

    ONCE = "once"
    WEEKDAYS = "weekdays"
    DAILY = "daily"


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    VERIFIED = "verified"


class TransactionType(str, Enum):
    """Enumerates the supported types of ledger entries."""

    EARNED = "earned"
    SPENT = "spent"
    ADJUSTED = "adjusted"
    BONUS = "bonus"


class RewardCategory(str, Enum):
    SCREEN_TIME = "screen_time"
    TREAT = "treat"
    ACTIVITY = "activity"
    TOY = "toy"
    PRIVILEGE = "privilege"
    OTHER = "other"


class RedemptionStatus(str, Enum):
    """Lifecycle for reward redemptions awaiting a parent."""

    PENDING = "pending"
    APPROVED = "approved"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


# (current, target) -> role allowed to perform the change.
ACTIVITY_TRANSITIONS: Mapping[Tuple[ActivityStatus, ActivityStatus], Role] = {
    (ActivityStatus.PENDING, ActivityStatus.IN_PROGRESS): Role.CHILD,
    (ActivityStatus.IN_PROGRESS, ActivityStatus.COMPLETED): Role.CHILD,
    (ActivityStatus.COMPLETED, ActivityStatus.VERIFIED): Role.PARENT,
}

COMPLETION_TRANSITIONS: Mapping[Tuple[CompletionStatus, CompletionStatus], Role] = {
    (CompletionStatus.COMPLETED, CompletionStatus.VERIFIED): Role.PARENT,
}

REDEMPTION_TRANSITIONS: Mapping[Tuple[RedemptionStatus, RedemptionStatus], Role] = {
    (RedemptionStatus.PENDING, RedemptionStatus.APPROVED): Role.PARENT,
    (RedemptionStatus.PENDING, RedemptionStatus.REJECTED): Role.PARENT,
    (RedemptionStatus.APPROVED, RedemptionStatus.FULFILLED): Role.PARENT,
}


def transition_role(table: Mapping[Tuple[Any, Any], Role], current: Any, target: Any) -> Optional[Role]:
    """Return the role allowed to move ``current`` to ``target`` or ``None``."""

    return table.get((current, target))


def _coerce(enum_type: type[Enum], value: Any, field_name: str) -> Any:
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}.") from exc


def _require_positive(value: int, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer.")


@dataclass(slots=True)
class Profile:
    """A parent or child belonging to one family."""

    id: str
    role: Role
    family_id: str
    name: str = ""
    age: Optional[int] = None
    pin_hash: Optional[str] = None

    def __post_init__(self) -> None:
        self.role = _coerce(Role, self.role, "role")

    @property
    def is_parent(self) -> bool:
        return self.role is Role.PARENT


@dataclass(slots=True)
class Activity:
    """A unit of work assigned by a parent.

    One-off activities (``frequency=once``) move through :class:`ActivityStatus`.
    Recurring activities are templates: their ``status`` stays ``pending`` and
    every performance is recorded as a :class:`Completion`.
    """

    family_id: str
    title: str
    points_value: int
    created_by: str
    category: ActivityCategory = ActivityCategory.OTHER
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    status: ActivityStatus = ActivityStatus.PENDING
    due_date: Optional[date] = None
    frequency: Frequency = Frequency.ONCE
    max_daily_count: int = 1
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None
    is_template: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self.category = _coerce(ActivityCategory, self.category, "category")
        self.status = _coerce(ActivityStatus, self.status, "status")
        self.frequency = _coerce(Frequency, self.frequency, "frequency")
        if not (self.title or "").strip():
            raise ValidationError("Activity title is required.")
        _require_positive(self.points_value, "points_value")
        _require_positive(self.max_daily_count, "max_daily_count")
        self.is_template = self.frequency is not Frequency.ONCE

    @property
    def is_global_one_off(self) -> bool:
        return self.assigned_to is None and not self.is_template


@dataclass(slots=True)
class Completion:
    """One performance of an activity by a child on a family-local day."""

    activity_id: int
    profile_id: str
    family_id: str
    completed_date: date
    completed_at: Optional[datetime] = None
    status: CompletionStatus = CompletionStatus.COMPLETED
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    points_awarded: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def __post_init__(self) -> None:
        self.status = _coerce(CompletionStatus, self.status, "status")
        self.metadata = dict(self.metadata or {})

    @property
    def is_verified(self) -> bool:
        return self.status is CompletionStatus.VERIFIED or self.points_awarded is not None


@dataclass(slots=True, frozen=True)
class LedgerEntry:
    """Represents a single immutable entry in a profile's points ledger."""

    profile_id: str
    family_id: str
    points_change: int
    balance_after: int
    transaction_type: TransactionType
    notes: str = ""
    activity_id: Optional[int] = None
    completion_id: Optional[int] = None
    reward_id: Optional[int] = None
    reference: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transaction_type", _coerce(TransactionType, self.transaction_type, "transaction_type")
        )
        links = [self.activity_id, self.completion_id, self.reward_id]
        if sum(link is not None for link in links) > 1:
            raise ValidationError("A ledger entry links to at most one activity, completion or reward.")
        if isinstance(self.points_change, bool) or not isinstance(self.points_change, int):
            raise ValidationError("points_change must be an integer.")
        if self.points_change == 0:
            raise ValidationError("points_change cannot be zero.")


@dataclass(slots=True)
class DailyStreak:
    """Consecutive-day verification counter for one profile."""

    profile_id: str
    family_id: str
    streak_count: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass(slots=True)
class Reward:
    """A family reward that children can spend points on."""

    family_id: str
    title: str
    points_cost: int
    created_by: str
    category: Optional[RewardCategory] = None
    description: Optional[str] = None
    icon_emoji: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        self.category = _coerce(RewardCategory, self.category, "category")
        if not (self.title or "").strip():
            raise ValidationError("Reward title is required.")
        _require_positive(self.points_cost, "points_cost")


@dataclass(slots=True)
class RewardRedemption:
    """Represents a reward request awaiting parent approval."""

    reward_id: int
    profile_id: str
    family_id: str
    points_spent: int
    status: RedemptionStatus = RedemptionStatus.PENDING
    request_key: Optional[str] = None
    notes: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        self.status = _coerce(RedemptionStatus, self.status, "status")


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable parent action."""

    actor: str
    action: str
    target: str
    family_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "Role",
    "ActivityCategory",
    "DEFAULT_CATEGORY_POINTS",
    "ActivityStatus",
    "Frequency",
    "CompletionStatus",
    "TransactionType",
    "RewardCategory",
    "RedemptionStatus",
    "ACTIVITY_TRANSITIONS",
    "COMPLETION_TRANSITIONS",
    "REDEMPTION_TRANSITIONS",
    "transition_role",
    "Profile",
    "Activity",
    "Completion",
    "LedgerEntry",
    "DailyStreak",
    "Reward",
    "RewardRedemption",
    "AuditEvent",
]
