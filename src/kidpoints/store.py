"""Generic record store used by every KidPoints workflow."""

from __future__ import annotations

import copy
import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from .exceptions import NotFoundError, ValidationError
from .models import Activity, Completion, DailyStreak, LedgerEntry, Profile, Reward, RewardRedemption

PROFILES = "profiles"
ACTIVITIES = "activities"
COMPLETIONS = "completions"
LEDGER = "ledger"
STREAKS = "streaks"
REWARDS = "rewards"
REDEMPTIONS = "redemptions"

RECORD_TYPES: Mapping[str, type] = {
    PROFILES: Profile,
    ACTIVITIES: Activity,
    COMPLETIONS: Completion,
    LEDGER: LedgerEntry,
    STREAKS: DailyStreak,
    REWARDS: Reward,
    REDEMPTIONS: RewardRedemption,
}


@dataclass(slots=True, frozen=True)
class Range:
    """Inclusive range filter; either bound may be left open."""

    start: Any = None
    end: Any = None

    def contains(self, value: Any) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


def init_field_names(record_type: type) -> tuple[str, ...]:
    return tuple(item.name for item in fields(record_type) if item.init)


def _check_table(table: str) -> type:
    try:
        return RECORD_TYPES[table]
    except KeyError:
        raise ValidationError(f"Unknown table {table!r}.") from None


def _missing(table: str, record_id: Any) -> NotFoundError:
    return NotFoundError(f"{RECORD_TYPES[table].__name__} {record_id} not found.")


class Store(ABC):
    """Persistence interface the services are written against.

    Implementations return detached copies of records; mutating a returned
    record never changes stored state. Failures of the backing store surface
    as :class:`~kidpoints.exceptions.PersistenceError`.
    """

    @abstractmethod
    def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Sequence[str] = (),
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Return the records matching equality or :class:`Range` filters."""

    @abstractmethod
    def insert(self, table: str, record: Any) -> Any:
        """Store ``record`` and return it with its identifier assigned."""

    @abstractmethod
    def update(self, table: str, record_id: Any, patch: Mapping[str, Any]) -> Any:
        """Apply ``patch`` to one record and return the updated copy."""

    @abstractmethod
    def delete(self, table: str, record_id: Any) -> None:
        ...

    def first(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Sequence[str] = (),
        descending: bool = False,
    ) -> Any | None:
        rows = self.find(table, filters, order_by=order_by, descending=descending, limit=1)
        return rows[0] if rows else None

    def get(self, table: str, record_id: Any, *, family_id: Optional[str] = None) -> Any:
        """Load one record, treating rows of another family as missing."""

        record = self.first(table, {"id": record_id})
        if record is None or (family_id is not None and record.family_id != family_id):
            raise _missing(table, record_id)
        return record

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        return len(self.find(table, filters))


def matches(record: Any, filters: Mapping[str, Any]) -> bool:
    for name, expected in filters.items():
        value = getattr(record, name)
        if isinstance(expected, Range):
            if not expected.contains(value):
                return False
        elif value != expected:
            return False
    return True


def _sort_key(order_by: Sequence[str]):
    def key(record: Any) -> tuple:
        return tuple((getattr(record, name) is not None, getattr(record, name)) for name in order_by)

    return key


class MemoryStore(Store):
    """Process-local store backed by dictionaries, used by tests and demos."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[Any, Any]] = {name: {} for name in RECORD_TYPES}
        self._sequences: Dict[str, Iterator[int]] = {name: itertools.count(1) for name in RECORD_TYPES}
        self._lock = threading.Lock()

    def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Sequence[str] = (),
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Any]:
        _check_table(table)
        with self._lock:
            rows = [row for row in self._tables[table].values() if matches(row, filters or {})]
        if order_by:
            rows.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(row) for row in rows]

    def insert(self, table: str, record: Any) -> Any:
        record_type = _check_table(table)
        if not isinstance(record, record_type):
            raise ValidationError(f"Table {table!r} stores {record_type.__name__} records.")
        with self._lock:
            if record.id is None:
                record = replace(record, id=next(self._sequences[table]))
            elif record.id in self._tables[table]:
                raise ValidationError(f"{record_type.__name__} {record.id} already exists.")
            self._tables[table][record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def update(self, table: str, record_id: Any, patch: Mapping[str, Any]) -> Any:
        record_type = _check_table(table)
        allowed = set(init_field_names(record_type)) - {"id"}
        unknown = set(patch) - allowed
        if unknown:
            raise ValidationError(f"Cannot update {', '.join(sorted(unknown))} on {table}.")
        with self._lock:
            current = self._tables[table].get(record_id)
            if current is None:
                raise _missing(table, record_id)
            updated = replace(current, **patch)
            self._tables[table][record_id] = updated
        return copy.deepcopy(updated)

    def delete(self, table: str, record_id: Any) -> None:
        _check_table(table)
        with self._lock:
            if self._tables[table].pop(record_id, None) is None:
                raise _missing(table, record_id)


__all__ = [
    "PROFILES",
    "ACTIVITIES",
    "COMPLETIONS",
    "LEDGER",
    "STREAKS",
    "REWARDS",
    "REDEMPTIONS",
    "RECORD_TYPES",
    "Range",
    "Store",
    "MemoryStore",
    "matches",
    "init_field_names",
]
