"""Custom exception hierarchy for the KidPoints package."""

from __future__ import annotations

from typing import Any, Dict, Optional


class KidPointsError(Exception):
    """Base class for all KidPoints specific errors."""

    code = "kidpoints_error"

    def details(self) -> Dict[str, Any]:
        return {}


class ValidationError(KidPointsError, ValueError):
    """Raised when input is rejected before any state is touched."""

    code = "validation_error"


class NotFoundError(KidPointsError):
    """Raised when a record is absent or outside the caller's family."""

    code = "not_found"


class ForbiddenError(KidPointsError):
    """Raised when the caller's role or identity does not allow the action."""

    code = "forbidden"


class InvalidTransitionError(KidPointsError):
    """Raised when a status change is not allowed from the current status."""

    code = "invalid_transition"


class NotAvailableTodayError(InvalidTransitionError):
    """Raised when a recurring activity is not scheduled for today."""

    code = "not_available_today"


class DailyLimitReachedError(KidPointsError):
    """Raised when a recurring activity hit its per-day completion cap."""

    code = "daily_limit_reached"

    def __init__(self, today_count: int, max_count: int) -> None:
        super().__init__(f"Daily limit reached ({today_count}/{max_count}).")
        self.today_count = today_count
        self.max_count = max_count

    def details(self) -> Dict[str, Any]:
        return {"today_count": self.today_count, "max_count": self.max_count}


class AlreadyVerifiedError(KidPointsError):
    """Raised when points were already awarded for a completion or activity."""

    code = "already_verified"


class RewardInactiveError(KidPointsError):
    """Raised when redeeming a reward that has been switched off."""

    code = "reward_inactive"


class InsufficientPointsError(KidPointsError):
    """Raised when a redemption would take the balance below zero."""

    code = "insufficient_points"

    def __init__(self, held: int, required: int) -> None:
        super().__init__(f"Insufficient points. You have {held}, need {required}.")
        self.held = held
        self.required = required

    def details(self) -> Dict[str, Any]:
        return {"held": self.held, "required": self.required}


class PersistenceError(KidPointsError):
    """Raised when the backing store fails to read or write."""

    code = "persistence_error"


class LedgerWriteFailedError(KidPointsError):
    """Raised when the ledger entry of a workflow could not be written."""

    code = "ledger_write_failed"


class PostLedgerUpdateFailedError(KidPointsError):
    """Raised when points moved but the follow-up record update failed.

    The ledger entry is attached so callers can reconcile. Retrying the same
    operation finishes the record step without moving points again.
    """

    code = "post_ledger_update_failed"
    points_moved = True

    def __init__(self, message: str, *, entry: Optional[Any] = None) -> None:
        super().__init__(message)
        self.entry = entry

    def details(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"points_moved": True}
        if self.entry is not None:
            payload["ledger_entry_id"] = self.entry.id
            payload["points_change"] = self.entry.points_change
            payload["reference"] = self.entry.reference
        return payload


class CompletionUpdateFailedAfterPaymentError(PostLedgerUpdateFailedError):
    """Points were awarded but the completion could not be marked verified."""

    code = "completion_update_failed_after_payment"


class ActivityUpdateFailedAfterPaymentError(PostLedgerUpdateFailedError):
    """Points were awarded but the activity could not be marked verified."""

    code = "activity_update_failed_after_payment"


class RedemptionCreateFailedAfterDebitError(PostLedgerUpdateFailedError):
    """Points were deducted but the redemption record was not created."""

    code = "redemption_create_failed_after_debit"

    def __init__(self, message: str, *, entry: Optional[Any] = None, request_key: Optional[str] = None) -> None:
        super().__init__(message, entry=entry)
        self.request_key = request_key

    def details(self) -> Dict[str, Any]:
        payload = super().details()
        payload["request_key"] = self.request_key
        return payload


class RedemptionUpdateFailedAfterRefundError(PostLedgerUpdateFailedError):
    """Points were refunded but the redemption could not be marked rejected."""

    code = "redemption_update_failed_after_refund"


__all__ = [
    "KidPointsError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidTransitionError",
    "NotAvailableTodayError",
    "DailyLimitReachedError",
    "AlreadyVerifiedError",
    "RewardInactiveError",
    "InsufficientPointsError",
    "PersistenceError",
    "LedgerWriteFailedError",
    "PostLedgerUpdateFailedError",
    "CompletionUpdateFailedAfterPaymentError",
    "ActivityUpdateFailedAfterPaymentError",
    "RedemptionCreateFailedAfterDebitError",
    "RedemptionUpdateFailedAfterRefundError",
]
