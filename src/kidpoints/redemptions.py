"""Reward catalog and the redemption workflow."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

from .admin import AuditLog
from .authz import Authorizer, Caller
from .clock import FamilyClock
from .exceptions import (
    InsufficientPointsError,
    InvalidTransitionError,
    LedgerWriteFailedError,
    PersistenceError,
    RedemptionCreateFailedAfterDebitError,
    RedemptionUpdateFailedAfterRefundError,
    RewardInactiveError,
    ValidationError,
)
from .ledger import PointsLedger
from .models import (
    REDEMPTION_TRANSITIONS,
    LedgerEntry,
    RedemptionStatus,
    Reward,
    RewardCategory,
    RewardRedemption,
    Role,
    TransactionType,
    transition_role,
)
from .ops import StructuredLogger
from .store import REDEMPTIONS, REWARDS, Store

REWARD_EDITABLE_FIELDS = frozenset(
    {"title", "points_cost", "category", "description", "icon_emoji", "is_active"}
)


class RejectionPolicy(str, Enum):
    """What happens to spent points when a parent rejects a redemption."""

    KEEP = "keep"
    REFUND = "refund"


@dataclass(slots=True)
class RedemptionReceipt:
    redemption: RewardRedemption
    points_deducted: int
    new_balance: int
    resumed: bool = False


class RewardCatalog:
    """Family rewards that children can spend points on."""

    def __init__(
        self,
        store: Store,
        clock: FamilyClock,
        authorizer: Authorizer,
        *,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.authorizer = authorizer
        self.audit = audit or AuditLog()

    def create_reward(
        self,
        caller: Caller,
        *,
        title: str,
        points_cost: int,
        category: RewardCategory | str | None = None,
        description: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        is_active: bool = True,
    ) -> Reward:
        self.authorizer.require_parent(caller, "create rewards")
        reward = Reward(
            family_id=caller.family_id,
            title=(title or "").strip(),
            points_cost=points_cost,
            created_by=caller.profile_id,
            category=category,
            description=description,
            icon_emoji=icon_emoji,
            is_active=is_active,
            created_at=self.clock.now(),
        )
        stored = self.store.insert(REWARDS, reward)
        self.audit.record(
            caller.profile_id,
            "reward.create",
            f"reward:{stored.id}",
            family_id=caller.family_id,
            details={"title": stored.title, "points_cost": stored.points_cost},
        )
        return stored

    def update_reward(self, caller: Caller, reward_id: int, changes: Mapping[str, Any]) -> Reward:
        self.authorizer.require_parent(caller, "edit rewards")
        reward = self.store.get(REWARDS, reward_id, family_id=caller.family_id)
        unknown = set(changes) - REWARD_EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}.")
        if not changes:
            return reward
        replace(reward, **changes)  # validate before writing
        updated = self.store.update(REWARDS, reward.id, dict(changes))
        self.audit.record(
            caller.profile_id,
            "reward.update",
            f"reward:{reward.id}",
            family_id=caller.family_id,
            details={name: str(value) for name, value in changes.items()},
        )
        return updated

    def deactivate_reward(self, caller: Caller, reward_id: int) -> Reward:
        return self.update_reward(caller, reward_id, {"is_active": False})

    def get_reward(self, caller: Caller, reward_id: int) -> Reward:
        return self.store.get(REWARDS, reward_id, family_id=caller.family_id)

    def list_rewards(self, caller: Caller, *, active: Optional[bool] = None) -> list[Reward]:
        filters: dict[str, Any] = {"family_id": caller.family_id}
        if caller.role is Role.CHILD:
            active = True
        if active is not None:
            filters["is_active"] = active
        return self.store.find(REWARDS, filters, order_by=("points_cost", "id"))


class RedemptionWorkflow:
    """Spend points on rewards and walk redemptions through approval.

    A redemption debits the ledger before the request record is written.
    The debit is keyed by the redemption's ``request_key``; a retry with the
    same key after a failed record write reuses the debit instead of taking
    the points twice.
    """

    def __init__(
        self,
        store: Store,
        clock: FamilyClock,
        ledger: PointsLedger,
        authorizer: Authorizer,
        *,
        rejection_policy: RejectionPolicy | str = RejectionPolicy.KEEP,
        logger: Optional[StructuredLogger] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.ledger = ledger
        self.authorizer = authorizer
        self.rejection_policy = RejectionPolicy(rejection_policy)
        self.logger = logger or StructuredLogger()
        self.audit = audit or AuditLog()

    def redeem_reward(
        self,
        caller: Caller,
        reward_id: int,
        *,
        request_key: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RedemptionReceipt:
        self.authorizer.require_child(caller, "redeem rewards")
        profile_id = caller.profile_id
        reward = self.store.get(REWARDS, reward_id, family_id=caller.family_id)
        key = request_key or uuid4().hex
        reference = f"redemption:{key}"

        with self.ledger.profile_lock(profile_id):
            if request_key:
                existing = self.store.first(REDEMPTIONS, {"profile_id": profile_id, "request_key": key})
                if existing is not None:
                    self._check_same_reward(existing.reward_id, reward, key)
                    return RedemptionReceipt(
                        redemption=existing,
                        points_deducted=existing.points_spent,
                        new_balance=self.ledger.current_balance(profile_id),
                        resumed=True,
                    )
            entry = self.ledger.find_reference(profile_id, reference)
            resumed = entry is not None
            if entry is None:
                entry = self._debit(caller, reward, reference)
            else:
                self._check_same_reward(entry.reward_id, reward, key)
            try:
                redemption = self.store.insert(
                    REDEMPTIONS,
                    RewardRedemption(
                        reward_id=reward.id,
                        profile_id=profile_id,
                        family_id=caller.family_id,
                        points_spent=-entry.points_change,
                        request_key=key,
                        notes=notes,
                        redeemed_at=self.clock.now(),
                    ),
                )
            except PersistenceError as exc:
                self.logger.error(
                    "redemption.create_failed",
                    reward_id=reward.id,
                    profile_id=profile_id,
                    ledger_entry_id=entry.id,
                    request_key=key,
                    error=str(exc),
                )
                raise RedemptionCreateFailedAfterDebitError(
                    "Points were deducted but the redemption request was not created. "
                    "Retry with the same request key to finish it.",
                    entry=entry,
                    request_key=key,
                ) from exc
            new_balance = self.ledger.current_balance(profile_id) if resumed else entry.balance_after

        self.logger.log(
            "redemption.create",
            redemption_id=redemption.id,
            reward_id=reward.id,
            profile_id=profile_id,
            points_spent=redemption.points_spent,
            resumed=resumed,
        )
        return RedemptionReceipt(
            redemption=redemption,
            points_deducted=redemption.points_spent,
            new_balance=new_balance,
            resumed=resumed,
        )

    @staticmethod
    def _check_same_reward(reward_id: Optional[int], reward: Reward, request_key: str) -> None:
        if reward_id != reward.id:
            raise ValidationError(f"Request key {request_key!r} was already used for another reward.")

    def _debit(self, caller: Caller, reward: Reward, reference: str) -> LedgerEntry:
        if not reward.is_active:
            raise RewardInactiveError("This reward is no longer available.")
        balance = self.ledger.current_balance(caller.profile_id)
        if balance < reward.points_cost:
            raise InsufficientPointsError(balance, reward.points_cost)
        try:
            return self.ledger.append(
                caller.profile_id,
                caller.family_id,
                -reward.points_cost,
                TransactionType.SPENT,
                f"Redeemed: {reward.title}",
                reward_id=reward.id,
                reference=reference,
            )
        except PersistenceError as exc:
            self.logger.error("redemption.ledger_failed", reward_id=reward.id, error=str(exc))
            raise LedgerWriteFailedError("Failed to deduct points. No redemption was created.") from exc

    def update_redemption_status(
        self,
        caller: Caller,
        redemption_id: int,
        status: RedemptionStatus | str,
        *,
        notes: Optional[str] = None,
    ) -> RewardRedemption:
        self.authorizer.require_parent(caller, "update redemptions")
        redemption = self.store.get(REDEMPTIONS, redemption_id, family_id=caller.family_id)
        try:
            target = RedemptionStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Invalid status: {status!r}.") from exc
        if target is redemption.status:
            return redemption
        if transition_role(REDEMPTION_TRANSITIONS, redemption.status, target) is not Role.PARENT:
            raise InvalidTransitionError(
                f"Cannot move redemption from {redemption.status.value} to {target.value}."
            )

        now = self.clock.now()
        patch: dict[str, Any] = {"status": target}
        if target in (RedemptionStatus.APPROVED, RedemptionStatus.REJECTED):
            patch["resolved_at"] = now
            patch["resolved_by"] = caller.profile_id
        if target is RedemptionStatus.FULFILLED and redemption.fulfilled_at is None:
            patch["fulfilled_at"] = now
            patch["fulfilled_by"] = caller.profile_id
        if notes is not None:
            patch["notes"] = notes

        refund: Optional[LedgerEntry] = None
        if target is RedemptionStatus.REJECTED and self.rejection_policy is RejectionPolicy.REFUND:
            refund = self._refund(caller, redemption)
        try:
            updated = self.store.update(REDEMPTIONS, redemption.id, patch)
        except PersistenceError as exc:
            if refund is None:
                raise
            self.logger.error(
                "redemption.update_failed_after_refund",
                redemption_id=redemption.id,
                ledger_entry_id=refund.id,
                error=str(exc),
            )
            raise RedemptionUpdateFailedAfterRefundError(
                "Points were refunded but the redemption could not be marked rejected. "
                "Retry to finish without refunding again.",
                entry=refund,
            ) from exc

        self.audit.record(
            caller.profile_id,
            f"redemption.{target.value}",
            f"redemption:{redemption.id}",
            family_id=caller.family_id,
            details={"refund": refund.points_change if refund else 0},
        )
        self.logger.log(
            "redemption.status",
            redemption_id=redemption.id,
            status=target.value,
            refunded=refund is not None,
        )
        return updated

    def _refund(self, caller: Caller, redemption: RewardRedemption) -> LedgerEntry:
        reference = f"refund:{redemption.id}"
        with self.ledger.profile_lock(redemption.profile_id):
            existing = self.ledger.find_reference(redemption.profile_id, reference)
            if existing is not None:
                return existing
            try:
                return self.ledger.append(
                    redemption.profile_id,
                    redemption.family_id,
                    redemption.points_spent,
                    TransactionType.ADJUSTED,
                    f"Refund for rejected redemption {redemption.id}",
                    reward_id=redemption.reward_id,
                    reference=reference,
                )
            except PersistenceError as exc:
                self.logger.error("redemption.refund_failed", redemption_id=redemption.id, error=str(exc))
                raise LedgerWriteFailedError("Failed to refund points. The redemption was not changed.") from exc

    def list_redemptions(
        self,
        caller: Caller,
        *,
        profile_id: Optional[str] = None,
        status: RedemptionStatus | str | None = None,
    ) -> list[RewardRedemption]:
        filters: dict[str, Any] = {"family_id": caller.family_id}
        if caller.role is Role.CHILD or profile_id is not None:
            filters["profile_id"] = self.authorizer.resolve_subject(caller, profile_id)
        if status is not None:
            filters["status"] = RedemptionStatus(status)
        return self.store.find(REDEMPTIONS, filters, order_by=("redeemed_at", "id"), descending=True)


__all__ = [
    "RejectionPolicy",
    "RedemptionReceipt",
    "RewardCatalog",
    "RedemptionWorkflow",
    "REWARD_EDITABLE_FIELDS",
]
