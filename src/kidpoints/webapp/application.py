"""FastAPI JSON API exposing the KidPoints workflows."""
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import exceptions
from ..activities import CompletionReceipt
from ..authz import Caller
from ..exceptions import KidPointsError
from ..models import (
    ActivityCategory,
    ActivityStatus,
    CompletionStatus,
    DailyStreak,
    Frequency,
    RedemptionStatus,
    RewardCategory,
    TransactionType,
)
from ..ops import StructuredLogger
from ..service import KidPoints
from . import config
from .persistence import SQLStore, create_db_engine, init_db

_STATUS_CODES: tuple[tuple[type[KidPointsError], int], ...] = (
    (exceptions.NotFoundError, 404),
    (exceptions.ForbiddenError, 403),
    (exceptions.PostLedgerUpdateFailedError, 500),
    (exceptions.LedgerWriteFailedError, 500),
    (exceptions.PersistenceError, 500),
)


def status_code_for(exc: KidPointsError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class ActivityCreate(BaseModel):
    title: str
    category: ActivityCategory = ActivityCategory.OTHER
    points_value: Optional[int] = None
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[date] = None
    frequency: Frequency = Frequency.ONCE
    max_daily_count: int = 1


class ActivityPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ActivityCategory] = None
    points_value: Optional[int] = None
    assigned_to: Optional[str] = None
    status: Optional[ActivityStatus] = None
    due_date: Optional[date] = None
    frequency: Optional[Frequency] = None
    max_daily_count: Optional[int] = None


class CompletionBody(BaseModel):
    metadata: Dict[str, Any] = {}


class RewardCreate(BaseModel):
    title: str
    points_cost: int
    category: Optional[RewardCategory] = None
    description: Optional[str] = None
    icon_emoji: Optional[str] = None
    is_active: bool = True


class RewardPatch(BaseModel):
    title: Optional[str] = None
    points_cost: Optional[int] = None
    category: Optional[RewardCategory] = None
    description: Optional[str] = None
    icon_emoji: Optional[str] = None
    is_active: Optional[bool] = None


class RedeemBody(BaseModel):
    reward_id: int
    request_key: Optional[str] = None
    notes: Optional[str] = None


class RedemptionPatch(BaseModel):
    status: RedemptionStatus
    notes: Optional[str] = None


class AdjustmentBody(BaseModel):
    profile_id: str
    points_change: int
    notes: str = ""
    transaction_type: TransactionType = TransactionType.ADJUSTED


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_points(request: Request) -> KidPoints:
    return request.app.state.points


def current_caller(
    x_profile_id: Optional[str] = Header(default=None),
    x_profile_role: Optional[str] = Header(default=None),
    x_family_id: Optional[str] = Header(default=None),
) -> Caller:
    if not (x_profile_id and x_profile_role and x_family_id):
        raise HTTPException(status_code=401, detail="Missing caller identity.")
    try:
        return Caller(profile_id=x_profile_id, role=x_profile_role, family_id=x_family_id)
    except exceptions.ValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def _streak_payload(streak: Optional[DailyStreak]) -> Optional[dict]:
    if streak is None:
        return None
    return {
        "streak_count": streak.streak_count,
        "longest_streak": streak.longest_streak,
        "last_activity_date": streak.last_activity_date,
    }


def _receipt_payload(receipt: CompletionReceipt) -> dict:
    payload: Dict[str, Any] = {
        "activity": receipt.activity,
        "completion": receipt.completion,
        "message": receipt.message,
    }
    if receipt.progress is not None:
        payload["today_count"] = receipt.progress.today_count
        payload["max_count"] = receipt.progress.max_count
        payload["remaining_today"] = receipt.progress.remaining_today
    return jsonable_encoder(payload)


router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Points and streaks
# ---------------------------------------------------------------------------
@router.get("/api/points")
def read_points(
    profile_id: Optional[str] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    summary = points.points_summary(caller, profile_id)
    return jsonable_encoder(
        {"profile_id": summary.profile_id, "balance": summary.balance, "transactions": summary.transactions}
    )


@router.post("/api/points/adjustments", status_code=201)
def adjust_points(
    body: AdjustmentBody,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    entry = points.adjust_points(
        caller, body.profile_id, body.points_change, body.notes, transaction_type=body.transaction_type
    )
    return jsonable_encoder(entry)


@router.get("/api/streaks")
def read_own_streak(caller: Caller = Depends(current_caller), points: KidPoints = Depends(get_points)) -> Any:
    streak = points.streak(caller)
    return jsonable_encoder({"profile_id": streak.profile_id, **_streak_payload(streak)})


@router.get("/api/streaks/{profile_id}")
def read_streak(
    profile_id: str,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    streak = points.streak(caller, profile_id)
    return jsonable_encoder({"profile_id": streak.profile_id, **_streak_payload(streak)})


@router.get("/api/profiles")
def list_profiles(caller: Caller = Depends(current_caller), points: KidPoints = Depends(get_points)) -> Any:
    return jsonable_encoder(points.profiles.list_profiles(caller))


# ---------------------------------------------------------------------------
# Activities and completions
# ---------------------------------------------------------------------------
@router.get("/api/activities")
def list_activities(
    status: Optional[ActivityStatus] = None,
    frequency: Optional[Frequency] = None,
    assigned_to: Optional[str] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    activities = points.activities.list_activities(
        caller, status=status, frequency=frequency, assigned_to=assigned_to
    )
    return jsonable_encoder(activities)


@router.post("/api/activities", status_code=201)
def create_activity(
    body: ActivityCreate,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    activity = points.activities.create_activity(caller, **body.model_dump())
    return jsonable_encoder(activity)


@router.get("/api/activities/{activity_id}")
def read_activity(
    activity_id: int,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    return jsonable_encoder(points.activities.get_activity(caller, activity_id))


@router.patch("/api/activities/{activity_id}")
def update_activity(
    activity_id: int,
    body: ActivityPatch,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    changes = body.model_dump(exclude_unset=True)
    return jsonable_encoder(points.activities.update_activity(caller, activity_id, changes))


@router.delete("/api/activities/{activity_id}")
def delete_activity(
    activity_id: int,
    correction: bool = False,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    points.activities.delete_activity(caller, activity_id, correction=correction)
    return {"deleted": activity_id}


@router.post("/api/activities/{activity_id}/start")
def start_activity(
    activity_id: int,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    return jsonable_encoder(points.activities.start_activity(caller, activity_id))


@router.post("/api/activities/{activity_id}/complete")
def complete_activity(
    activity_id: int,
    body: Optional[CompletionBody] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    metadata = body.metadata if body is not None else None
    receipt = points.activities.complete_activity(caller, activity_id, metadata=metadata)
    return _receipt_payload(receipt)


@router.get("/api/activities/{activity_id}/progress")
def activity_progress(
    activity_id: int,
    profile_id: Optional[str] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    progress = points.activities.today_progress(caller, activity_id, profile_id)
    return jsonable_encoder(
        {
            "activity_id": progress.activity_id,
            "profile_id": progress.profile_id,
            "day": progress.day,
            "today_count": progress.today_count,
            "max_count": progress.max_count,
            "remaining_today": progress.remaining_today,
            "available": progress.available,
        }
    )


@router.post("/api/activities/{activity_id}/verify")
def verify_activity(
    activity_id: int,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    result = points.verify_activity(caller, activity_id)
    return jsonable_encoder(
        {
            "activity": result.activity,
            "points_awarded": result.points_awarded,
            "new_balance": result.new_balance,
            "streak": _streak_payload(result.streak),
        }
    )


@router.get("/api/completions")
def list_completions(
    activity_id: Optional[int] = None,
    profile_id: Optional[str] = None,
    status: Optional[CompletionStatus] = None,
    since: Optional[date] = None,
    until: Optional[date] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    completions = points.activities.list_completions(
        caller, activity_id=activity_id, profile_id=profile_id, status=status, since=since, until=until
    )
    return jsonable_encoder(completions)


@router.post("/api/completions/{completion_id}/verify")
def verify_completion(
    completion_id: int,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    result = points.verify_completion(caller, completion_id)
    return jsonable_encoder(
        {
            "completion": result.completion,
            "points_awarded": result.points_awarded,
            "new_balance": result.new_balance,
            "streak": _streak_payload(result.streak),
        }
    )


# ---------------------------------------------------------------------------
# Rewards and redemptions
# ---------------------------------------------------------------------------
@router.get("/api/rewards/redemptions")
def list_redemptions(
    profile_id: Optional[str] = None,
    status: Optional[RedemptionStatus] = None,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    redemptions = points.redemptions.list_redemptions(caller, profile_id=profile_id, status=status)
    return jsonable_encoder(redemptions)


@router.post("/api/rewards/redemptions", status_code=201)
def redeem_reward(
    body: RedeemBody,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    receipt = points.redemptions.redeem_reward(
        caller, body.reward_id, request_key=body.request_key, notes=body.notes
    )
    return jsonable_encoder(
        {
            "redemption": receipt.redemption,
            "points_deducted": receipt.points_deducted,
            "new_balance": receipt.new_balance,
        }
    )


@router.patch("/api/rewards/redemptions/{redemption_id}")
def update_redemption(
    redemption_id: int,
    body: RedemptionPatch,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    redemption = points.redemptions.update_redemption_status(
        caller, redemption_id, body.status, notes=body.notes
    )
    return jsonable_encoder(redemption)


@router.get("/api/rewards")
def list_rewards(
    active: Optional[bool] = Query(default=None),
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    return jsonable_encoder(points.rewards.list_rewards(caller, active=active))


@router.post("/api/rewards", status_code=201)
def create_reward(
    body: RewardCreate,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    return jsonable_encoder(points.rewards.create_reward(caller, **body.model_dump()))


@router.get("/api/rewards/{reward_id}")
def read_reward(
    reward_id: int,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    return jsonable_encoder(points.rewards.get_reward(caller, reward_id))


@router.patch("/api/rewards/{reward_id}")
def update_reward(
    reward_id: int,
    body: RewardPatch,
    caller: Caller = Depends(current_caller),
    points: KidPoints = Depends(get_points),
) -> Any:
    changes = body.model_dump(exclude_unset=True)
    return jsonable_encoder(points.rewards.update_reward(caller, reward_id, changes))


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def build_points_from_config() -> KidPoints:
    engine = create_db_engine(config.DATABASE_URL)
    init_db(engine)
    return KidPoints(
        SQLStore(engine),
        timezone_name=config.FAMILY_TIMEZONE,
        rejection_policy=config.REJECTION_POLICY,
        serialize_ledger=config.SERIALIZE_LEDGER,
        history_limit=config.HISTORY_LIMIT,
        logger=StructuredLogger(path=Path(config.LOG_PATH) if config.LOG_PATH else None),
    )


def create_app(points: Optional[KidPoints] = None) -> FastAPI:
    app = FastAPI(title="KidPoints")
    app.state.points = points or build_points_from_config()

    @app.exception_handler(KidPointsError)
    async def handle_kidpoints_error(request: Request, exc: KidPointsError) -> JSONResponse:
        status_code = status_code_for(exc)
        app.state.points.logger.log(
            "api.error",
            level="error" if status_code >= 500 else "info",
            path=request.url.path,
            code=exc.code,
            status_code=status_code,
        )
        payload = {"error": str(exc), "code": exc.code, **exc.details()}
        return JSONResponse(jsonable_encoder(payload), status_code=status_code)

    app.include_router(router)
    return app


__all__ = ["create_app", "build_points_from_config", "router", "status_code_for", "current_caller"]
