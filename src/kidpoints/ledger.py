"""Append-only points ledger."""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Optional

from .clock import FamilyClock
from .locks import KeyedLock
from .models import LedgerEntry, TransactionType
from .ops import StructuredLogger
from .store import LEDGER, Store

DEFAULT_HISTORY_LIMIT = 50
# ids are assigned in insert order; wall-clock timestamps are not
_CHAIN_ORDER = ("id",)


@dataclass(slots=True, frozen=True)
class LedgerCheck:
    """Result of replaying a profile's ledger from the first entry."""

    profile_id: str
    entries: int
    expected_balance: int
    recorded_balance: int
    mismatched_entry_ids: tuple[int, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.mismatched_entry_ids and self.expected_balance == self.recorded_balance


class PointsLedger:
    """Compute balances from, and append entries to, the points ledger.

    The balance is never cached: it is always the ``balance_after`` of the
    newest entry, the one with the highest id. ``append`` reads the balance
    and inserts under a per-profile lock so two writers in this process
    cannot compute the same running total. Writers in other processes are not covered; :meth:`reconcile`
    detects the resulting drift.
    """

    def __init__(
        self,
        store: Store,
        clock: FamilyClock,
        *,
        logger: Optional[StructuredLogger] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.logger = logger or StructuredLogger()
        self.locks = locks or KeyedLock()

    def profile_lock(self, profile_id: str) -> AbstractContextManager[None]:
        return self.locks.hold(("ledger", profile_id))

    def current_balance(self, profile_id: str, family_id: Optional[str] = None) -> int:
        filters = {"profile_id": profile_id}
        if family_id is not None:
            filters["family_id"] = family_id
        latest = self.store.first(LEDGER, filters, order_by=_CHAIN_ORDER, descending=True)
        return latest.balance_after if latest else 0

    def append(
        self,
        profile_id: str,
        family_id: str,
        points_change: int,
        transaction_type: TransactionType | str,
        notes: str = "",
        *,
        activity_id: Optional[int] = None,
        completion_id: Optional[int] = None,
        reward_id: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> LedgerEntry:
        with self.profile_lock(profile_id):
            previous = self.current_balance(profile_id)
            entry = LedgerEntry(
                profile_id=profile_id,
                family_id=family_id,
                points_change=points_change,
                balance_after=previous + points_change,
                transaction_type=transaction_type,
                notes=notes,
                activity_id=activity_id,
                completion_id=completion_id,
                reward_id=reward_id,
                reference=reference,
                created_at=self.clock.now(),
            )
            stored = self.store.insert(LEDGER, entry)
        self.logger.log(
            "ledger.append",
            profile_id=profile_id,
            family_id=family_id,
            entry_id=stored.id,
            points_change=points_change,
            balance_after=stored.balance_after,
            transaction_type=stored.transaction_type.value,
            reference=reference,
        )
        return stored

    def history(
        self,
        profile_id: str,
        family_id: Optional[str] = None,
        *,
        limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ) -> list[LedgerEntry]:
        """Return entries newest first."""

        filters = {"profile_id": profile_id}
        if family_id is not None:
            filters["family_id"] = family_id
        return self.store.find(LEDGER, filters, order_by=_CHAIN_ORDER, descending=True, limit=limit)

    def find_reference(self, profile_id: str, reference: str) -> Optional[LedgerEntry]:
        return self.store.first(LEDGER, {"profile_id": profile_id, "reference": reference})

    def reconcile(self, profile_id: str) -> LedgerCheck:
        entries = self.store.find(LEDGER, {"profile_id": profile_id}, order_by=_CHAIN_ORDER)
        running = 0
        mismatched: list[int] = []
        for entry in entries:
            running += entry.points_change
            if entry.balance_after != running:
                mismatched.append(entry.id)
        recorded = entries[-1].balance_after if entries else 0
        check = LedgerCheck(
            profile_id=profile_id,
            entries=len(entries),
            expected_balance=running,
            recorded_balance=recorded,
            mismatched_entry_ids=tuple(mismatched),
        )
        if not check.consistent:
            self.logger.error(
                "ledger.mismatch",
                profile_id=profile_id,
                expected_balance=running,
                recorded_balance=recorded,
                mismatched_entry_ids=list(mismatched),
            )
        return check


__all__ = ["DEFAULT_HISTORY_LIMIT", "LedgerCheck", "PointsLedger"]
