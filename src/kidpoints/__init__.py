"""KidPoints package for family activity points, streaks and rewards."""

from .activities import ActivityService, CompletionReceipt, DailyProgress
from .admin import AuditLog
from .authz import Authorizer, Caller, ProfileDirectory
from .clock import FamilyClock, ManualClock, is_available_today
from .exceptions import (
    ActivityUpdateFailedAfterPaymentError,
    AlreadyVerifiedError,
    CompletionUpdateFailedAfterPaymentError,
    DailyLimitReachedError,
    ForbiddenError,
    InsufficientPointsError,
    InvalidTransitionError,
    KidPointsError,
    LedgerWriteFailedError,
    NotAvailableTodayError,
    NotFoundError,
    PersistenceError,
    PostLedgerUpdateFailedError,
    RedemptionCreateFailedAfterDebitError,
    RedemptionUpdateFailedAfterRefundError,
    RewardInactiveError,
    ValidationError,
)
from .ledger import LedgerCheck, PointsLedger
from .models import (
    Activity,
    ActivityCategory,
    ActivityStatus,
    AuditEvent,
    Completion,
    CompletionStatus,
    DailyStreak,
    Frequency,
    LedgerEntry,
    Profile,
    RedemptionStatus,
    Reward,
    RewardCategory,
    RewardRedemption,
    Role,
    TransactionType,
)
from .ops import StructuredLogger
from .redemptions import RedemptionReceipt, RedemptionWorkflow, RejectionPolicy, RewardCatalog
from .service import KidPoints, PointsSummary
from .store import MemoryStore, Range, Store
from .streaks import StreakTracker
from .verification import ActivityVerification, CompletionVerification, VerificationWorkflow

__all__ = [
    "Activity",
    "ActivityCategory",
    "ActivityService",
    "ActivityStatus",
    "ActivityUpdateFailedAfterPaymentError",
    "ActivityVerification",
    "AlreadyVerifiedError",
    "AuditEvent",
    "AuditLog",
    "Authorizer",
    "Caller",
    "Completion",
    "CompletionReceipt",
    "CompletionStatus",
    "CompletionUpdateFailedAfterPaymentError",
    "CompletionVerification",
    "DailyLimitReachedError",
    "DailyProgress",
    "DailyStreak",
    "FamilyClock",
    "ForbiddenError",
    "Frequency",
    "InsufficientPointsError",
    "InvalidTransitionError",
    "KidPoints",
    "KidPointsError",
    "LedgerCheck",
    "LedgerEntry",
    "LedgerWriteFailedError",
    "ManualClock",
    "MemoryStore",
    "NotAvailableTodayError",
    "NotFoundError",
    "PersistenceError",
    "PointsLedger",
    "PointsSummary",
    "PostLedgerUpdateFailedError",
    "Profile",
    "ProfileDirectory",
    "Range",
    "RedemptionCreateFailedAfterDebitError",
    "RedemptionReceipt",
    "RedemptionStatus",
    "RedemptionUpdateFailedAfterRefundError",
    "RedemptionWorkflow",
    "RejectionPolicy",
    "Reward",
    "RewardCatalog",
    "RewardCategory",
    "RewardInactiveError",
    "RewardRedemption",
    "Role",
    "Store",
    "StreakTracker",
    "StructuredLogger",
    "TransactionType",
    "ValidationError",
    "VerificationWorkflow",
    "is_available_today",
]
