"""High level service API tying together the KidPoints components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .activities import ActivityService
from .admin import AuditLog
from .authz import Authorizer, Caller, ProfileDirectory
from .clock import FamilyClock
from .exceptions import InsufficientPointsError, LedgerWriteFailedError, PersistenceError, ValidationError
from .ledger import DEFAULT_HISTORY_LIMIT, PointsLedger
from .locks import KeyedLock, NullLock
from .models import DailyStreak, LedgerEntry, RedemptionStatus, RewardRedemption, TransactionType
from .ops import StructuredLogger
from .redemptions import RedemptionReceipt, RedemptionWorkflow, RejectionPolicy, RewardCatalog
from .store import MemoryStore, Store
from .streaks import StreakTracker
from .verification import ActivityVerification, CompletionVerification, VerificationWorkflow

MANUAL_TRANSACTION_TYPES = frozenset({TransactionType.ADJUSTED, TransactionType.BONUS})


@dataclass(slots=True)
class PointsSummary:
    profile_id: str
    balance: int
    transactions: list[LedgerEntry]


class KidPoints:
    """Facade for a KidPoints deployment.

    Components are exposed as attributes (``activities``, ``verification``,
    ``rewards``, ``redemptions``...) and the most common workflow calls are
    mirrored here for convenience.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        *,
        clock: Optional[FamilyClock] = None,
        timezone_name: str = "UTC",
        rejection_policy: RejectionPolicy | str = RejectionPolicy.KEEP,
        serialize_ledger: bool = True,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        logger: Optional[StructuredLogger] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store or MemoryStore()
        self.clock = clock or FamilyClock(timezone_name)
        self.logger = logger or StructuredLogger()
        self.audit = audit or AuditLog(now_fn=self.clock.now)
        self.history_limit = history_limit
        locks = KeyedLock()
        self.authorizer = Authorizer(self.store)
        self.profiles = ProfileDirectory(self.store, self.authorizer)
        self.ledger = PointsLedger(
            self.store,
            self.clock,
            logger=self.logger,
            locks=locks if serialize_ledger else NullLock(),
        )
        self.streaks = StreakTracker(self.store, self.clock, locks=locks)
        self.activities = ActivityService(
            self.store, self.clock, self.authorizer, logger=self.logger, audit=self.audit, locks=locks
        )
        self.verification = VerificationWorkflow(
            self.store,
            self.clock,
            self.ledger,
            self.streaks,
            self.authorizer,
            logger=self.logger,
            audit=self.audit,
        )
        self.rewards = RewardCatalog(self.store, self.clock, self.authorizer, audit=self.audit)
        self.redemptions = RedemptionWorkflow(
            self.store,
            self.clock,
            self.ledger,
            self.authorizer,
            rejection_policy=rejection_policy,
            logger=self.logger,
            audit=self.audit,
        )

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------
    def balance(self, caller: Caller, profile_id: Optional[str] = None) -> int:
        subject = self.authorizer.resolve_subject(caller, profile_id)
        return self.ledger.current_balance(subject, caller.family_id)

    def points_summary(self, caller: Caller, profile_id: Optional[str] = None) -> PointsSummary:
        """Return the balance and the most recent ledger entries, newest first."""

        subject = self.authorizer.resolve_subject(caller, profile_id)
        return PointsSummary(
            profile_id=subject,
            balance=self.ledger.current_balance(subject, caller.family_id),
            transactions=self.ledger.history(subject, caller.family_id, limit=self.history_limit),
        )

    def adjust_points(
        self,
        caller: Caller,
        profile_id: str,
        points_change: int,
        notes: str = "",
        *,
        transaction_type: TransactionType | str = TransactionType.ADJUSTED,
    ) -> LedgerEntry:
        """Apply a manual correction or bonus chosen by a parent."""

        self.authorizer.require_parent(caller, "adjust points")
        child = self.authorizer.family_child(caller, profile_id)
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError as exc:
            raise ValidationError(f"Invalid transaction type: {transaction_type!r}.") from exc
        if transaction_type not in MANUAL_TRANSACTION_TYPES:
            raise ValidationError("Manual changes must be adjustments or bonuses.")
        if isinstance(points_change, bool) or not isinstance(points_change, int) or points_change == 0:
            raise ValidationError("points_change must be a non-zero integer.")
        if transaction_type is TransactionType.BONUS and points_change < 0:
            raise ValidationError("Bonuses must be positive.")
        with self.ledger.profile_lock(child.id):
            balance = self.ledger.current_balance(child.id)
            if balance + points_change < 0:
                raise InsufficientPointsError(balance, -points_change)
            try:
                entry = self.ledger.append(
                    child.id,
                    caller.family_id,
                    points_change,
                    transaction_type,
                    notes or f"Manual {transaction_type.value} by parent",
                )
            except PersistenceError as exc:
                raise LedgerWriteFailedError("Failed to record the adjustment.") from exc
        self.audit.record(
            caller.profile_id,
            f"points.{transaction_type.value}",
            f"profile:{child.id}",
            family_id=caller.family_id,
            details={"points_change": points_change, "notes": notes},
        )
        return entry

    # ------------------------------------------------------------------
    # Streaks
    # ------------------------------------------------------------------
    def streak(self, caller: Caller, profile_id: Optional[str] = None) -> DailyStreak:
        """Return the streak for display; profiles without one read as zeros."""

        subject = self.authorizer.resolve_subject(caller, profile_id)
        current = self.streaks.get(subject, caller.family_id)
        if current is None:
            return DailyStreak(profile_id=subject, family_id=caller.family_id)
        return current

    # ------------------------------------------------------------------
    # Workflow shortcuts
    # ------------------------------------------------------------------
    def verify_completion(self, caller: Caller, completion_id: int) -> CompletionVerification:
        return self.verification.verify_completion(caller, completion_id)

    def verify_activity(self, caller: Caller, activity_id: int) -> ActivityVerification:
        return self.verification.verify_activity(caller, activity_id)

    def redeem_reward(
        self,
        caller: Caller,
        reward_id: int,
        *,
        request_key: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RedemptionReceipt:
        return self.redemptions.redeem_reward(caller, reward_id, request_key=request_key, notes=notes)

    def update_redemption_status(
        self,
        caller: Caller,
        redemption_id: int,
        status: RedemptionStatus | str,
        *,
        notes: Optional[str] = None,
    ) -> RewardRedemption:
        return self.redemptions.update_redemption_status(caller, redemption_id, status, notes=notes)


__all__ = ["KidPoints", "PointsSummary", "MANUAL_TRANSACTION_TYPES"]
