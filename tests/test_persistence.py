from datetime import date, datetime, timedelta, timezone

import pytest

pytest.importorskip("sqlmodel")

from conftest import AVA, MOM, OTHER_PARENT, START, register_family
from kidpoints.clock import ManualClock
from kidpoints.exceptions import NotFoundError, PersistenceError, ValidationError
from kidpoints.models import (
    Activity,
    ActivityCategory,
    ActivityStatus,
    Completion,
    CompletionStatus,
    Frequency,
    LedgerEntry,
    Profile,
    Role,
    TransactionType,
)
from kidpoints.service import KidPoints
from kidpoints.store import ACTIVITIES, COMPLETIONS, LEDGER, PROFILES, Range
from kidpoints.webapp.persistence import SQLStore, create_db_engine, init_db


@pytest.fixture()
def sql_store() -> SQLStore:
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return SQLStore(engine)


def _activity(**overrides) -> Activity:
    values = {
        "family_id": "fam1",
        "title": "Times tables",
        "points_value": 15,
        "created_by": "mom",
        "category": ActivityCategory.PRACTICE,
        "created_at": START,
    }
    values.update(overrides)
    return Activity(**values)


def test_records_round_trip_with_enums_and_metadata(sql_store) -> None:
    activity = sql_store.insert(ACTIVITIES, _activity(frequency="weekdays", due_date=date(2026, 10, 30)))
    completion = sql_store.insert(
        COMPLETIONS,
        Completion(
            activity_id=activity.id,
            profile_id="ava",
            family_id="fam1",
            completed_date=date(2026, 10, 19),
            completed_at=START,
            metadata={"book_title": "Holes", "pages_read": 30},
        ),
    )

    loaded = sql_store.get(ACTIVITIES, activity.id)
    assert loaded.id == activity.id
    assert loaded.category is ActivityCategory.PRACTICE
    assert loaded.frequency is Frequency.WEEKDAYS
    assert loaded.is_template
    assert loaded.due_date == date(2026, 10, 30)
    assert loaded.created_at == START

    stored = sql_store.get(COMPLETIONS, completion.id, family_id="fam1")
    assert stored.status is CompletionStatus.COMPLETED
    assert stored.metadata == {"book_title": "Holes", "pages_read": 30}


def test_filters_order_and_limit(sql_store) -> None:
    for offset, title in enumerate(["Read", "Draw", "Build"]):
        sql_store.insert(
            ACTIVITIES,
            _activity(title=title, created_at=START + timedelta(hours=offset), assigned_to="ava" if offset else None),
        )

    newest = sql_store.find(ACTIVITIES, {"family_id": "fam1"}, order_by=("created_at", "id"), descending=True, limit=2)
    assert [item.title for item in newest] == ["Build", "Draw"]

    unassigned = sql_store.find(ACTIVITIES, {"assigned_to": None})
    assert [item.title for item in unassigned] == ["Read"]

    window = sql_store.find(ACTIVITIES, {"created_at": Range(START + timedelta(minutes=30), None)})
    assert {item.title for item in window} == {"Draw", "Build"}

    assert sql_store.count(ACTIVITIES, {"status": ActivityStatus.PENDING}) == 3
    assert sql_store.first(ACTIVITIES, {"family_id": "fam2"}) is None


def test_update_validates_and_returns_a_copy(sql_store) -> None:
    activity = sql_store.insert(ACTIVITIES, _activity())

    updated = sql_store.update(ACTIVITIES, activity.id, {"status": ActivityStatus.IN_PROGRESS})
    assert updated.status is ActivityStatus.IN_PROGRESS
    assert sql_store.get(ACTIVITIES, activity.id).status is ActivityStatus.IN_PROGRESS

    with pytest.raises(ValidationError):
        sql_store.update(ACTIVITIES, activity.id, {"points_value": 0})
    with pytest.raises(ValidationError):
        sql_store.update(ACTIVITIES, activity.id, {"colour": "red"})
    with pytest.raises(NotFoundError):
        sql_store.update(ACTIVITIES, 999, {"title": "Nope"})
    assert sql_store.get(ACTIVITIES, activity.id).points_value == 15


def test_missing_and_foreign_rows_read_as_not_found(sql_store) -> None:
    activity = sql_store.insert(ACTIVITIES, _activity())

    with pytest.raises(NotFoundError):
        sql_store.get(ACTIVITIES, activity.id, family_id="fam2")
    with pytest.raises(NotFoundError):
        sql_store.delete(ACTIVITIES, 999)

    sql_store.delete(ACTIVITIES, activity.id)
    with pytest.raises(NotFoundError):
        sql_store.get(ACTIVITIES, activity.id)


def test_duplicates_are_rejected(sql_store) -> None:
    sql_store.insert(PROFILES, Profile(id="ava", role=Role.CHILD, family_id="fam1", name="Ava"))
    with pytest.raises(ValidationError):
        sql_store.insert(PROFILES, Profile(id="ava", role=Role.CHILD, family_id="fam1", name="Ava again"))
    assert sql_store.get(PROFILES, "ava").role is Role.CHILD

    entry = LedgerEntry("ava", "fam1", 5, 5, TransactionType.EARNED, reference="completion:1", created_at=START)
    sql_store.insert(LEDGER, entry)
    with pytest.raises(ValidationError):
        sql_store.insert(LEDGER, entry)


def test_missing_tables_surface_as_persistence_errors() -> None:
    store = SQLStore(create_db_engine("sqlite://"))
    with pytest.raises(PersistenceError):
        store.find(ACTIVITIES)
    with pytest.raises(PersistenceError):
        store.insert(ACTIVITIES, _activity())


def test_full_workflow_on_the_database(sql_store) -> None:
    clock = ManualClock(START)
    points = KidPoints(sql_store, clock=clock)
    register_family(points)

    activity = points.activities.create_activity(
        MOM, title="Read", category="reading", frequency="daily", max_daily_count=2
    )
    completion = points.activities.complete_activity(AVA, activity.id, metadata={"pages_read": 12}).completion
    result = points.verify_completion(MOM, completion.id)
    assert result.new_balance == 10
    assert result.streak.streak_count == 1

    clock.advance_days(1)
    second = points.activities.complete_activity(AVA, activity.id).completion
    assert points.verify_completion(MOM, second.id).streak.streak_count == 2

    reward = points.rewards.create_reward(MOM, title="Ice cream", points_cost=15)
    receipt = points.redeem_reward(AVA, reward.id, request_key="cone")
    assert receipt.new_balance == 5
    assert points.redeem_reward(AVA, reward.id, request_key="cone").resumed

    summary = points.points_summary(AVA)
    assert summary.balance == 5
    assert [entry.points_change for entry in summary.transactions] == [-15, 10, 10]
    assert points.ledger.reconcile("ava").consistent
    with pytest.raises(NotFoundError):
        points.activities.get_activity(OTHER_PARENT, activity.id)
    assert points.activities.list_completions(MOM, since=clock.today(), until=clock.today())[0].id == second.id
    assert isinstance(points.activities.list_completions(MOM)[0].completed_at, datetime)


def test_timestamps_are_stored_as_utc(sql_store) -> None:
    dublin_evening = datetime(2026, 10, 19, 20, 30, tzinfo=timezone(timedelta(hours=1)))
    activity = sql_store.insert(ACTIVITIES, _activity(created_at=dublin_evening))

    loaded = sql_store.get(ACTIVITIES, activity.id)
    assert loaded.created_at == dublin_evening
    assert loaded.created_at.utcoffset() == timedelta(0)
    assert loaded.created_at.hour == 19

    window = sql_store.find(ACTIVITIES, {"created_at": Range(datetime(2026, 10, 19, 19, 0, tzinfo=timezone.utc), None)})
    assert [item.id for item in window] == [activity.id]


def test_naive_timestamps_are_refused(sql_store) -> None:
    with pytest.raises(PersistenceError):
        sql_store.insert(ACTIVITIES, _activity(created_at=datetime(2026, 10, 19, 9, 0)))
    assert sql_store.count(ACTIVITIES) == 0
