import pytest

from conftest import AVA, BEN, MOM, OTHER_CHILD, OTHER_PARENT, register_family
from kidpoints.exceptions import (
    ForbiddenError,
    InsufficientPointsError,
    InvalidTransitionError,
    LedgerWriteFailedError,
    NotFoundError,
    RedemptionCreateFailedAfterDebitError,
    RedemptionUpdateFailedAfterRefundError,
    RewardInactiveError,
    ValidationError,
)
from kidpoints.models import RedemptionStatus, RewardCategory, TransactionType
from kidpoints.redemptions import RejectionPolicy
from kidpoints.service import KidPoints
from kidpoints.store import LEDGER, REDEMPTIONS


@pytest.fixture()
def refunding(store, clock) -> KidPoints:
    app = KidPoints(store, clock=clock, rejection_policy="refund")
    register_family(app)
    return app


def _reward(points, cost=50, **extra):
    return points.rewards.create_reward(MOM, title="Movie night", points_cost=cost, **extra)


def test_redemption_needs_enough_points(points) -> None:
    reward = _reward(points)
    points.adjust_points(MOM, "ava", 30)

    with pytest.raises(InsufficientPointsError) as excinfo:
        points.redeem_reward(AVA, reward.id)
    assert (excinfo.value.held, excinfo.value.required) == (30, 50)
    assert str(excinfo.value) == "Insufficient points. You have 30, need 50."
    assert points.balance(AVA) == 30
    assert points.redemptions.list_redemptions(AVA) == []


def test_redeeming_the_whole_balance_is_allowed(points) -> None:
    reward = _reward(points, cost=30, category="treat")
    points.adjust_points(MOM, "ava", 30)

    receipt = points.redeem_reward(AVA, reward.id)

    assert receipt.points_deducted == 30
    assert receipt.new_balance == 0
    assert receipt.redemption.status is RedemptionStatus.PENDING
    assert receipt.redemption.points_spent == 30
    spent = points.ledger.history("ava")[0]
    assert spent.transaction_type is TransactionType.SPENT
    assert spent.points_change == -30
    assert spent.reward_id == reward.id


def test_points_spent_is_frozen_at_redemption_time(points) -> None:
    reward = _reward(points, cost=20)
    points.adjust_points(MOM, "ava", 50)
    receipt = points.redeem_reward(AVA, reward.id)

    points.rewards.update_reward(MOM, reward.id, {"points_cost": 45})

    stored = points.redemptions.list_redemptions(MOM, profile_id="ava")[0]
    assert stored.points_spent == receipt.points_deducted == 20


def test_inactive_rewards_and_parents_cannot_redeem(points) -> None:
    reward = _reward(points, cost=5)
    points.adjust_points(MOM, "ava", 10)

    with pytest.raises(ForbiddenError):
        points.redeem_reward(MOM, reward.id)

    points.rewards.deactivate_reward(MOM, reward.id)
    with pytest.raises(RewardInactiveError):
        points.redeem_reward(AVA, reward.id)
    with pytest.raises(NotFoundError):
        points.redeem_reward(OTHER_CHILD, reward.id)
    assert points.balance(AVA) == 10


def test_ledger_failure_creates_no_redemption(points, store) -> None:
    reward = _reward(points, cost=5)
    points.adjust_points(MOM, "ava", 10)
    store.failures.add(("insert", LEDGER))

    with pytest.raises(LedgerWriteFailedError):
        points.redeem_reward(AVA, reward.id)

    assert points.redemptions.list_redemptions(MOM) == []
    assert points.balance(AVA) == 10


def test_failed_record_write_is_finished_by_a_retry_with_the_same_key(points, store) -> None:
    reward = _reward(points, cost=20)
    points.adjust_points(MOM, "ava", 50)
    store.failures.add(("insert", REDEMPTIONS))

    with pytest.raises(RedemptionCreateFailedAfterDebitError) as excinfo:
        points.redeem_reward(AVA, reward.id, request_key="tablet-1")
    details = excinfo.value.details()
    assert details["points_moved"] is True
    assert details["request_key"] == "tablet-1"
    assert details["points_change"] == -20
    assert points.balance(AVA) == 30

    store.failures.clear()
    retry = points.redeem_reward(AVA, reward.id, request_key="tablet-1")

    assert retry.resumed
    assert retry.new_balance == 30
    assert retry.redemption.request_key == "tablet-1"
    assert points.balance(AVA) == 30
    assert len(points.redemptions.list_redemptions(AVA)) == 1

    again = points.redeem_reward(AVA, reward.id, request_key="tablet-1")
    assert again.resumed
    assert again.redemption.id == retry.redemption.id
    assert points.balance(AVA) == 30


def test_failed_record_write_without_a_key_still_reports_one(points, store) -> None:
    reward = _reward(points, cost=10)
    points.adjust_points(MOM, "ava", 10)
    store.failures.add(("insert", REDEMPTIONS))

    with pytest.raises(RedemptionCreateFailedAfterDebitError) as excinfo:
        points.redeem_reward(AVA, reward.id)
    key = excinfo.value.request_key
    assert key

    store.failures.clear()
    retry = points.redeem_reward(AVA, reward.id, request_key=key)
    assert retry.resumed
    assert points.balance(AVA) == 0


def test_request_key_stays_tied_to_its_reward(points, store) -> None:
    cheap = points.rewards.create_reward(MOM, title="Sticker", points_cost=5)
    pricey = _reward(points, cost=50)
    points.adjust_points(MOM, "ava", 60)
    store.failures.add(("insert", REDEMPTIONS))

    with pytest.raises(RedemptionCreateFailedAfterDebitError):
        points.redeem_reward(AVA, cheap.id, request_key="k1")
    store.failures.clear()
    assert points.balance(AVA) == 55

    with pytest.raises(ValidationError):
        points.redeem_reward(AVA, pricey.id, request_key="k1")
    assert points.balance(AVA) == 55
    assert points.redemptions.list_redemptions(AVA) == []

    finished = points.redeem_reward(AVA, cheap.id, request_key="k1", notes="Gold star please")
    assert finished.resumed
    assert finished.redemption.reward_id == cheap.id
    assert finished.redemption.points_spent == 5
    assert finished.redemption.notes == "Gold star please"

    with pytest.raises(ValidationError):
        points.redeem_reward(AVA, pricey.id, request_key="k1")
    assert points.balance(AVA) == 55
    assert len(points.ledger.history("ava")) == 2


def test_distinct_requests_are_charged_separately(points) -> None:
    reward = _reward(points, cost=10)
    points.adjust_points(MOM, "ava", 25)

    points.redeem_reward(AVA, reward.id, request_key="a")
    second = points.redeem_reward(AVA, reward.id, request_key="b")

    assert second.new_balance == 5
    with pytest.raises(InsufficientPointsError):
        points.redeem_reward(AVA, reward.id, request_key="c")


def test_parents_walk_redemptions_through_their_lifecycle(points, clock) -> None:
    reward = _reward(points, cost=10)
    points.adjust_points(MOM, "ava", 10)
    redemption = points.redeem_reward(AVA, reward.id).redemption

    with pytest.raises(ForbiddenError):
        points.update_redemption_status(AVA, redemption.id, "approved")
    with pytest.raises(InvalidTransitionError):
        points.update_redemption_status(MOM, redemption.id, "fulfilled")
    with pytest.raises(ValidationError):
        points.update_redemption_status(MOM, redemption.id, "lost")
    with pytest.raises(NotFoundError):
        points.update_redemption_status(OTHER_PARENT, redemption.id, "approved")

    approved = points.update_redemption_status(MOM, redemption.id, RedemptionStatus.APPROVED)
    assert approved.resolved_by == "mom"
    assert approved.resolved_at == clock.now()
    assert approved.fulfilled_at is None

    fulfilled = points.update_redemption_status(MOM, redemption.id, "fulfilled")
    assert fulfilled.status is RedemptionStatus.FULFILLED
    assert fulfilled.fulfilled_by == "mom"

    # same status is a no-op
    assert points.update_redemption_status(MOM, redemption.id, "fulfilled") == fulfilled
    with pytest.raises(InvalidTransitionError):
        points.update_redemption_status(MOM, redemption.id, "rejected")
    assert points.audit.entries(action="redemption.fulfilled")


def test_rejection_keeps_points_by_default(points, store) -> None:
    reward = _reward(points, cost=10)
    points.adjust_points(MOM, "ava", 10)
    redemption = points.redeem_reward(AVA, reward.id).redemption

    rejected = points.update_redemption_status(MOM, redemption.id, "rejected", notes="Not this week")
    assert store.get(REDEMPTIONS, redemption.id).notes == "Not this week"

    assert points.redemptions.rejection_policy is RejectionPolicy.KEEP
    assert rejected.status is RedemptionStatus.REJECTED
    assert rejected.notes == "Not this week"
    assert points.balance(AVA) == 0
    with pytest.raises(InvalidTransitionError):
        points.update_redemption_status(MOM, redemption.id, "approved")


def test_refund_policy_returns_points_once(refunding, store) -> None:
    reward = _reward(refunding, cost=10)
    refunding.adjust_points(MOM, "ava", 15)
    redemption = refunding.redeem_reward(AVA, reward.id).redemption
    store.failures.add(("update", REDEMPTIONS))

    with pytest.raises(RedemptionUpdateFailedAfterRefundError) as excinfo:
        refunding.update_redemption_status(MOM, redemption.id, "rejected")
    assert excinfo.value.details()["reference"] == f"refund:{redemption.id}"
    assert refunding.balance(AVA) == 15

    store.failures.clear()
    rejected = refunding.update_redemption_status(MOM, redemption.id, "rejected")

    assert rejected.status is RedemptionStatus.REJECTED
    assert refunding.balance(AVA) == 15
    refund = refunding.ledger.history("ava")[0]
    assert refund.transaction_type is TransactionType.ADJUSTED
    assert refund.points_change == 10
    assert refunding.ledger.reconcile("ava").consistent


def test_approval_under_refund_policy_keeps_the_debit(refunding) -> None:
    reward = _reward(refunding, cost=10)
    refunding.adjust_points(MOM, "ava", 10)
    redemption = refunding.redeem_reward(AVA, reward.id).redemption

    refunding.update_redemption_status(MOM, redemption.id, "approved")
    assert refunding.balance(AVA) == 0


def test_redemption_listing_is_scoped(points) -> None:
    reward = _reward(points, cost=5)
    points.adjust_points(MOM, "ava", 10)
    points.adjust_points(MOM, "ben", 10)
    points.redeem_reward(AVA, reward.id)
    ben_redemption = points.redeem_reward(BEN, reward.id).redemption
    points.update_redemption_status(MOM, ben_redemption.id, "approved")

    assert {item.profile_id for item in points.redemptions.list_redemptions(AVA)} == {"ava"}
    assert len(points.redemptions.list_redemptions(MOM)) == 2
    assert len(points.redemptions.list_redemptions(MOM, status="approved")) == 1
    assert points.redemptions.list_redemptions(OTHER_PARENT) == []
    with pytest.raises(ForbiddenError):
        points.redemptions.list_redemptions(AVA, profile_id="ben")


def test_catalog_is_managed_by_parents(points) -> None:
    cheap = _reward(points, cost=5, category=RewardCategory.SCREEN_TIME, icon_emoji="📺")
    pricey = _reward(points, cost=80)
    hidden = _reward(points, cost=1, is_active=False)

    with pytest.raises(ForbiddenError):
        points.rewards.create_reward(AVA, title="Everything", points_cost=1)
    with pytest.raises(ForbiddenError):
        points.rewards.update_reward(AVA, cheap.id, {"points_cost": 1})
    with pytest.raises(ValidationError):
        points.rewards.update_reward(MOM, cheap.id, {"points_cost": 0})
    with pytest.raises(ValidationError):
        points.rewards.update_reward(MOM, cheap.id, {"family_id": "fam2"})
    with pytest.raises(ValidationError):
        points.rewards.create_reward(MOM, title="Mystery", points_cost=5, category="vacation")
    with pytest.raises(NotFoundError):
        points.rewards.get_reward(OTHER_PARENT, cheap.id)

    assert [reward.id for reward in points.rewards.list_rewards(AVA)] == [cheap.id, pricey.id]
    assert [reward.id for reward in points.rewards.list_rewards(MOM)] == [hidden.id, cheap.id, pricey.id]
    assert [reward.id for reward in points.rewards.list_rewards(MOM, active=False)] == [hidden.id]
    assert points.rewards.get_reward(AVA, cheap.id).category is RewardCategory.SCREEN_TIME
