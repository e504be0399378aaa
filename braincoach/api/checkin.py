import json
import logging
from datetime import date, datetime
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from braincoach.api.auth import get_current_user, limit_ai_requests
from braincoach.core.context_builder import (
    SCORE_HISTORY_DAYS,
    build_daily_state,
    checkin_snapshot,
    get_checkin,
    history_points,
    recent_checkins,
    recommendations_of,
    score_history,
    score_snapshot,
    utc_today,
)
from braincoach.core.error_tracker import make_error_reporter
from braincoach.core.insights import build_insights
from braincoach.core.pipeline import CheckinResult, submit_checkin
from braincoach.core.validation import CheckInForm, validate
from braincoach.db.models import DailyCheckIn, User
from braincoach.db.session import get_db
from braincoach.services.generators import Generators, get_generators

router = APIRouter(prefix="/checkin", tags=["checkin"])
logger = logging.getLogger("uvicorn.error")


class CheckInItem(BaseModel):
    checkin_date: date
    checkIn: dict[str, Any]
    userGoals: str
    scores: dict[str, Union[int, float]]
    recommendations: dict[str, list[str]]
    updated_at: datetime


class ScoreHistoryItem(BaseModel):
    date: str
    label: str
    calmIndex: Union[int, float]
    productivityIndex: Union[int, float]


class ScoreHistoryResponse(BaseModel):
    items: list[ScoreHistoryItem]


class InsightItem(BaseModel):
    type: str
    title: str
    description: str
    data: Optional[dict[str, Any]] = None
    actionable: bool = False
    priority: str


class InsightsResponse(BaseModel):
    items: list[InsightItem]


def _to_item(row: DailyCheckIn) -> CheckInItem:
    return CheckInItem(
        checkin_date=row.checkin_date,
        checkIn=checkin_snapshot(row),
        userGoals=row.user_goals,
        scores=score_snapshot(row),
        recommendations=recommendations_of(row),
        updated_at=row.updated_at,
    )


def _persist_checkin(db: Session, user: User, form: CheckInForm, result: CheckinResult) -> DailyCheckIn:
    data = result.data
    today = utc_today()
    row = get_checkin(db, user.id, today)
    if not row:
        row = DailyCheckIn(user_id=user.id, checkin_date=today)
        db.add(row)
    row.mood = form.mood
    row.sleep = form.sleep
    row.diet = form.diet
    row.exercise = form.exercise
    row.stressors = form.stressors
    row.user_goals = form.userGoals
    row.calm_index = float(data.scores.calmIndex)
    row.productivity_index = float(data.scores.productivityIndex)
    row.personalized_json = json.dumps(data.personalizedRecommendations, separators=(",", ":"))
    row.habit_tools_json = json.dumps(data.habitTools, separators=(",", ":"))
    if form.userGoals:
        user.goals = form.userGoals
    db.commit()
    db.refresh(row)
    return row


@router.post("", response_model=CheckinResult, response_model_exclude_none=True, status_code=status.HTTP_200_OK)
def create_checkin(
    mood: Optional[str] = Form(default=None),
    sleep: Optional[str] = Form(default=None),
    diet: Optional[str] = Form(default=None),
    exercise: Optional[str] = Form(default=None),
    stressors: Optional[str] = Form(default=None),
    user_goals: Optional[str] = Form(default=None, alias="userGoals"),
    user: User = Depends(limit_ai_requests),
    db: Session = Depends(get_db),
    generators: Generators = Depends(get_generators),
) -> CheckinResult:
    raw_form = {
        "mood": mood,
        "sleep": sleep,
        "diet": diet,
        "exercise": exercise,
        "stressors": stressors,
        "userGoals": user_goals,
    }
    result = submit_checkin(raw_form, generators, error_reporter=make_error_reporter(db, user.id))
    if result.status != "success":
        return result

    form, _ = validate(CheckInForm, {k: v for k, v in raw_form.items() if v is not None})
    row = _persist_checkin(db, user, form, result)
    logger.info(
        "checkin_saved user_id=%s date=%s calm=%s productivity=%s",
        user.id,
        row.checkin_date.isoformat(),
        row.calm_index,
        row.productivity_index,
    )
    return result


@router.get("/today", response_model=CheckInItem)
def get_today_checkin(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> CheckInItem:
    row = get_checkin(db, user.id, utc_today())
    if not row:
        raise HTTPException(status_code=404, detail="No check-in for today")
    return _to_item(row)


@router.get("/history", response_model=ScoreHistoryResponse)
def get_score_history(
    days: int = Query(default=SCORE_HISTORY_DAYS, ge=1, le=30),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScoreHistoryResponse:
    return ScoreHistoryResponse(items=[ScoreHistoryItem(**item) for item in score_history(db, user.id, days)])


@router.get("/state")
def get_daily_state(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, Any]:
    return build_daily_state(db, user)


@router.get("/insights", response_model=InsightsResponse)
def get_insights(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> InsightsResponse:
    rows = recent_checkins(db, user.id, days=30)
    insights = build_insights(history_points(rows), today=utc_today())
    return InsightsResponse(items=[InsightItem(**item) for item in insights])
