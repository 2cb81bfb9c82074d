"""Persistence and SQLModel definitions for the KidPoints web API."""
from __future__ import annotations

import json
from dataclasses import replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Session, SQLModel, create_engine, desc, select

from ..exceptions import NotFoundError, PersistenceError, ValidationError
from ..store import (
    ACTIVITIES,
    COMPLETIONS,
    LEDGER,
    PROFILES,
    RECORD_TYPES,
    REDEMPTIONS,
    REWARDS,
    STREAKS,
    Range,
    Store,
    init_field_names,
)

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that store them naive."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Timestamps must be timezone-aware.")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            # SQLite drops the offset; values were written as UTC
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ProfileRow(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    role: str
    family_id: str = Field(index=True)
    name: str = ""
    age: Optional[int] = None
    pin_hash: Optional[str] = None


class ActivityRow(SQLModel, table=True):
    __tablename__ = "activities"

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: str = Field(index=True)
    title: str
    description: Optional[str] = None
    category: str = "other"
    points_value: int
    assigned_to: Optional[str] = None
    status: str = "pending"
    due_date: Optional[date] = None
    frequency: str = "once"
    max_daily_count: int = 1
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    verified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    verified_by: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class CompletionRow(SQLModel, table=True):
    __tablename__ = "completions"

    id: Optional[int] = Field(default=None, primary_key=True)
    activity_id: int = Field(index=True)
    profile_id: str = Field(index=True)
    family_id: str = Field(index=True)
    completed_date: date
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    status: str = "completed"
    verified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    verified_by: Optional[str] = None
    points_awarded: Optional[int] = None
    metadata_json: str = "{}"


class LedgerRow(SQLModel, table=True):
    __tablename__ = "ledger"
    __table_args__ = (UniqueConstraint("profile_id", "reference"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    profile_id: str = Field(index=True)
    family_id: str = Field(index=True)
    activity_id: Optional[int] = None
    completion_id: Optional[int] = None
    reward_id: Optional[int] = None
    points_change: int
    balance_after: int
    transaction_type: str
    notes: str = ""
    reference: Optional[str] = Field(default=None, index=True)
    created_at: Optional[datetime] = Field(default=None, index=True, sa_type=UTCDateTime)


class StreakRow(SQLModel, table=True):
    __tablename__ = "streaks"
    __table_args__ = (UniqueConstraint("profile_id", "family_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    profile_id: str = Field(index=True)
    family_id: str
    streak_count: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class RewardRow(SQLModel, table=True):
    __tablename__ = "rewards"

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: str = Field(index=True)
    title: str
    description: Optional[str] = None
    points_cost: int
    category: Optional[str] = None
    icon_emoji: Optional[str] = None
    is_active: bool = True
    created_by: str
    created_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class RedemptionRow(SQLModel, table=True):
    __tablename__ = "redemptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    reward_id: int
    profile_id: str = Field(index=True)
    family_id: str = Field(index=True)
    points_spent: int
    status: str = "pending"
    request_key: Optional[str] = Field(default=None, index=True)
    notes: Optional[str] = None
    redeemed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    resolved_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    resolved_by: Optional[str] = None
    fulfilled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    fulfilled_by: Optional[str] = None


ROW_TYPES: Mapping[str, type[SQLModel]] = {
    PROFILES: ProfileRow,
    ACTIVITIES: ActivityRow,
    COMPLETIONS: CompletionRow,
    LEDGER: LedgerRow,
    STREAKS: StreakRow,
    REWARDS: RewardRow,
    REDEMPTIONS: RedemptionRow,
}

# record attribute -> column, where they differ
_COLUMN_NAMES: Dict[str, str] = {"metadata": "metadata_json"}


def create_db_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False)
    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # in-memory databases live on a single connection
        options["poolclass"] = StaticPool
    return create_engine(url, echo=False, **options)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _row_values(record: Any) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in init_field_names(type(record)):
        value = getattr(record, name)
        if name == "metadata":
            values[_COLUMN_NAMES[name]] = json.dumps(value or {}, default=str)
        else:
            values[name] = _db_value(value)
    return values


def _record_from_row(table: str, row: SQLModel) -> Any:
    record_type = RECORD_TYPES[table]
    values: Dict[str, Any] = {}
    for name in init_field_names(record_type):
        if name == "metadata":
            values[name] = json.loads(getattr(row, _COLUMN_NAMES[name]) or "{}")
        else:
            values[name] = getattr(row, name)
    return record_type(**values)


class SQLStore(Store):
    """:class:`~kidpoints.store.Store` backed by SQLModel tables."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _row_type(self, table: str) -> type[SQLModel]:
        try:
            return ROW_TYPES[table]
        except KeyError:
            raise ValidationError(f"Unknown table {table!r}.") from None

    def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Sequence[str] = (),
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Any]:
        row_type = self._row_type(table)
        statement = select(row_type)
        for name, expected in (filters or {}).items():
            column = getattr(row_type, _COLUMN_NAMES.get(name, name))
            if isinstance(expected, Range):
                if expected.start is not None:
                    statement = statement.where(column >= expected.start)
                if expected.end is not None:
                    statement = statement.where(column <= expected.end)
            elif expected is None:
                statement = statement.where(column.is_(None))
            else:
                statement = statement.where(column == _db_value(expected))
        for name in order_by:
            column = getattr(row_type, name)
            statement = statement.order_by(desc(column) if descending else column)
        if limit is not None:
            statement = statement.limit(limit)
        try:
            with Session(self.engine) as session:
                rows = session.exec(statement).all()
                return [_record_from_row(table, row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read {table}.") from exc

    def insert(self, table: str, record: Any) -> Any:
        row_type = self._row_type(table)
        values = _row_values(record)
        if values.get("id") is None:
            values.pop("id", None)
        try:
            with Session(self.engine) as session:
                row = row_type(**values)
                session.add(row)
                session.commit()
                session.refresh(row)
                return _record_from_row(table, row)
        except IntegrityError as exc:
            raise ValidationError(f"Duplicate {table} record.") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write {table}.") from exc

    def update(self, table: str, record_id: Any, patch: Mapping[str, Any]) -> Any:
        row_type = self._row_type(table)
        try:
            with Session(self.engine) as session:
                row = session.get(row_type, record_id)
                if row is None:
                    raise NotFoundError(f"{RECORD_TYPES[table].__name__} {record_id} not found.")
                try:
                    updated = replace(_record_from_row(table, row), **patch)
                except TypeError as exc:
                    raise ValidationError(f"Cannot update {', '.join(sorted(patch))} on {table}.") from exc
                for column, value in _row_values(updated).items():
                    setattr(row, column, value)
                session.add(row)
                session.commit()
                session.refresh(row)
                return _record_from_row(table, row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update {table}.") from exc

    def delete(self, table: str, record_id: Any) -> None:
        row_type = self._row_type(table)
        try:
            with Session(self.engine) as session:
                row = session.get(row_type, record_id)
                if row is None:
                    raise NotFoundError(f"{RECORD_TYPES[table].__name__} {record_id} not found.")
                session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete {table}.") from exc


__all__ = [
    "ProfileRow",
    "ActivityRow",
    "CompletionRow",
    "LedgerRow",
    "StreakRow",
    "RewardRow",
    "RedemptionRow",
    "ROW_TYPES",
    "SQLStore",
    "create_db_engine",
    "init_db",
]
