"""Parent verification of completed work, awarding ledger points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .admin import AuditLog
from .authz import Authorizer, Caller
from .clock import FamilyClock
from .exceptions import (
    ActivityUpdateFailedAfterPaymentError,
    AlreadyVerifiedError,
    CompletionUpdateFailedAfterPaymentError,
    InvalidTransitionError,
    LedgerWriteFailedError,
    PersistenceError,
    ValidationError,
)
from .ledger import PointsLedger
from .models import (
    ACTIVITY_TRANSITIONS,
    COMPLETION_TRANSITIONS,
    Activity,
    ActivityStatus,
    Completion,
    CompletionStatus,
    DailyStreak,
    LedgerEntry,
    Role,
    TransactionType,
    transition_role,
)
from .ops import StructuredLogger
from .store import ACTIVITIES, COMPLETIONS, Store
from .streaks import StreakTracker


@dataclass(slots=True)
class CompletionVerification:
    completion: Completion
    points_awarded: int
    new_balance: int
    entry: LedgerEntry
    streak: Optional[DailyStreak] = None
    resumed: bool = False


@dataclass(slots=True)
class ActivityVerification:
    activity: Activity
    points_awarded: int
    new_balance: int
    entry: LedgerEntry
    streak: Optional[DailyStreak] = None
    resumed: bool = False


class VerificationWorkflow:
    """Award points for completed work in a fixed order.

    Each verification credits the ledger first and then marks the record
    verified. The credit carries a reference naming the record, so when the
    second step fails a retry finds the earlier credit and only finishes the
    record update. Streak updates run last and never fail a verification.
    """

    def __init__(
        self,
        store: Store,
        clock: FamilyClock,
        ledger: PointsLedger,
        streaks: StreakTracker,
        authorizer: Authorizer,
        *,
        logger: Optional[StructuredLogger] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.ledger = ledger
        self.streaks = streaks
        self.authorizer = authorizer
        self.logger = logger or StructuredLogger()
        self.audit = audit or AuditLog()

    def verify_completion(self, caller: Caller, completion_id: int) -> CompletionVerification:
        self.authorizer.require_parent(caller, "verify completions")
        completion = self.store.get(COMPLETIONS, completion_id, family_id=caller.family_id)
        allowed = transition_role(COMPLETION_TRANSITIONS, completion.status, CompletionStatus.VERIFIED)
        if allowed is not Role.PARENT or completion.points_awarded is not None:
            raise AlreadyVerifiedError(f"Completion {completion.id} is already verified.")
        activity = self.store.get(ACTIVITIES, completion.activity_id, family_id=caller.family_id)

        entry, resumed = self._credit(
            caller,
            completion.profile_id,
            activity.points_value,
            f"Completed: {activity.title}",
            reference=f"completion:{completion.id}",
            completion_id=completion.id,
        )
        try:
            updated = self.store.update(
                COMPLETIONS,
                completion.id,
                {
                    "status": CompletionStatus.VERIFIED,
                    "verified_at": self.clock.now(),
                    "verified_by": caller.profile_id,
                    "points_awarded": entry.points_change,
                },
            )
        except PersistenceError as exc:
            self.logger.error(
                "verification.completion_update_failed",
                completion_id=completion.id,
                ledger_entry_id=entry.id,
                error=str(exc),
            )
            raise CompletionUpdateFailedAfterPaymentError(
                "Points were awarded but the completion could not be marked verified. "
                "Retry to finish without awarding points again.",
                entry=entry,
            ) from exc

        streak = self._update_streak(completion.profile_id, caller.family_id)
        self.audit.record(
            caller.profile_id,
            "completion.verify",
            f"completion:{completion.id}",
            family_id=caller.family_id,
            details={"points": entry.points_change, "profile_id": completion.profile_id},
        )
        return CompletionVerification(
            completion=updated,
            points_awarded=entry.points_change,
            new_balance=self._balance_after(entry, resumed),
            entry=entry,
            streak=streak,
            resumed=resumed,
        )

    def verify_activity(self, caller: Caller, activity_id: int) -> ActivityVerification:
        """Verify an assigned one-off activity directly, without a completion."""

        self.authorizer.require_parent(caller, "verify activities")
        activity = self.store.get(ACTIVITIES, activity_id, family_id=caller.family_id)
        if activity.status is ActivityStatus.VERIFIED:
            raise AlreadyVerifiedError(f"Activity {activity.id} is already verified.")
        if activity.is_template:
            raise InvalidTransitionError("Recurring activities are verified one completion at a time.")
        if transition_role(ACTIVITY_TRANSITIONS, activity.status, ActivityStatus.VERIFIED) is not Role.PARENT:
            raise InvalidTransitionError("Activity must be completed before it can be verified.")
        if activity.assigned_to is None:
            raise ValidationError("Activity has no assignee to award points to.")

        entry, resumed = self._credit(
            caller,
            activity.assigned_to,
            activity.points_value,
            f"Verified: {activity.title}",
            reference=f"activity:{activity.id}",
            activity_id=activity.id,
        )
        now = self.clock.now()
        try:
            updated = self.store.update(
                ACTIVITIES,
                activity.id,
                {
                    "status": ActivityStatus.VERIFIED,
                    "verified_at": now,
                    "verified_by": caller.profile_id,
                    "updated_at": now,
                },
            )
        except PersistenceError as exc:
            self.logger.error(
                "verification.activity_update_failed",
                activity_id=activity.id,
                ledger_entry_id=entry.id,
                error=str(exc),
            )
            raise ActivityUpdateFailedAfterPaymentError(
                "Points were awarded but the activity could not be marked verified. "
                "Retry to finish without awarding points again.",
                entry=entry,
            ) from exc

        streak = self._update_streak(activity.assigned_to, caller.family_id)
        self.audit.record(
            caller.profile_id,
            "activity.verify",
            f"activity:{activity.id}",
            family_id=caller.family_id,
            details={"points": entry.points_change, "profile_id": activity.assigned_to},
        )
        return ActivityVerification(
            activity=updated,
            points_awarded=entry.points_change,
            new_balance=self._balance_after(entry, resumed),
            entry=entry,
            streak=streak,
            resumed=resumed,
        )

    def _credit(
        self,
        caller: Caller,
        profile_id: str,
        points: int,
        notes: str,
        *,
        reference: str,
        activity_id: Optional[int] = None,
        completion_id: Optional[int] = None,
    ) -> tuple[LedgerEntry, bool]:
        with self.ledger.profile_lock(profile_id):
            existing = self.ledger.find_reference(profile_id, reference)
            if existing is not None:
                self.logger.log("verification.resume", reference=reference, ledger_entry_id=existing.id)
                return existing, True
            try:
                entry = self.ledger.append(
                    profile_id,
                    caller.family_id,
                    points,
                    TransactionType.EARNED,
                    notes,
                    activity_id=activity_id,
                    completion_id=completion_id,
                    reference=reference,
                )
            except PersistenceError as exc:
                self.logger.error("verification.ledger_failed", reference=reference, error=str(exc))
                raise LedgerWriteFailedError("Failed to award points. Nothing was changed.") from exc
        return entry, False

    def _balance_after(self, entry: LedgerEntry, resumed: bool) -> int:
        if resumed:
            return self.ledger.current_balance(entry.profile_id)
        return entry.balance_after

    def _update_streak(self, profile_id: str, family_id: str) -> Optional[DailyStreak]:
        try:
            return self.streaks.update(profile_id, family_id, self.clock.today())
        except Exception as exc:  # logged only; the award stands
            self.logger.error("streak.update_failed", profile_id=profile_id, error=repr(exc))
            return None


__all__ = ["ActivityVerification", "CompletionVerification", "VerificationWorkflow"]
