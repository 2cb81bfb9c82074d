from datetime import datetime, timezone

import pytest

from kidpoints.authz import Caller
from kidpoints.clock import ManualClock
from kidpoints.exceptions import PersistenceError
from kidpoints.models import Profile, Role
from kidpoints.service import KidPoints
from kidpoints.store import MemoryStore

# Monday
START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

MOM = Caller("mom", Role.PARENT, "fam1")
AVA = Caller("ava", Role.CHILD, "fam1")
BEN = Caller("ben", Role.CHILD, "fam1")
OTHER_PARENT = Caller("zed", Role.PARENT, "fam2")
OTHER_CHILD = Caller("zoe", Role.CHILD, "fam2")


class FailingStore(MemoryStore):
    """Memory store that raises for selected (operation, table) pairs."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: set[tuple[str, str]] = set()

    def _maybe_fail(self, operation: str, table: str) -> None:
        if (operation, table) in self.failures:
            raise PersistenceError(f"simulated {operation} failure on {table}")

    def insert(self, table, record):
        self._maybe_fail("insert", table)
        return super().insert(table, record)

    def update(self, table, record_id, patch):
        self._maybe_fail("update", table)
        return super().update(table, record_id, patch)


def register_family(points: KidPoints) -> None:
    points.profiles.register(Profile(id="mom", role=Role.PARENT, family_id="fam1", name="Mom"))
    points.profiles.register(Profile(id="ava", role=Role.CHILD, family_id="fam1", name="Ava", age=9))
    points.profiles.register(Profile(id="ben", role=Role.CHILD, family_id="fam1", name="Ben", age=7))
    points.profiles.register(Profile(id="zed", role=Role.PARENT, family_id="fam2", name="Zed"))
    points.profiles.register(Profile(id="zoe", role=Role.CHILD, family_id="fam2", name="Zoe"))


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def store() -> FailingStore:
    return FailingStore()


@pytest.fixture()
def points(store, clock) -> KidPoints:
    app = KidPoints(store, clock=clock)
    register_family(app)
    return app
