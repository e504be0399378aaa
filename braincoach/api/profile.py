import csv
import io
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from braincoach.api.auth import get_current_user
from braincoach.core.context_builder import checkin_snapshot, recommendations_of, score_snapshot
from braincoach.core.retention import delete_user_data
from braincoach.db.models import DailyCheckIn, User
from braincoach.db.session import get_db

router = APIRouter(prefix="/profile", tags=["profile"])
logger = logging.getLogger("uvicorn.error")

EXPORT_COLUMNS = [
    "checkin_date",
    "mood",
    "sleep",
    "diet",
    "exercise",
    "stressors",
    "user_goals",
    "calm_index",
    "productivity_index",
    "personalized_recommendations",
    "habit_tools",
]


class Theme(str, Enum):
    light = "light"
    dark = "dark"
    system = "system"


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"


class ProfileResponse(BaseModel):
    email: str
    display_name: Optional[str] = None
    goals: str
    theme: Theme
    notifications: bool
    data_retention_days: int
    onboarding_completed: bool
    created_at: datetime


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=100)
    goals: Optional[str] = Field(default=None, max_length=1000)
    theme: Optional[Theme] = None
    notifications: Optional[bool] = None
    data_retention_days: Optional[int] = Field(default=None, ge=1, le=365)
    onboarding_completed: Optional[bool] = None


class DataDeleteResponse(BaseModel):
    deleted: dict[str, int]


def _to_response(user: User) -> ProfileResponse:
    return ProfileResponse(
        email=user.email,
        display_name=user.display_name,
        goals=user.goals or "",
        theme=Theme(user.theme or "system"),
        notifications=bool(user.notifications),
        data_retention_days=user.data_retention_days,
        onboarding_completed=bool(user.onboarding_completed),
        created_at=user.created_at,
    )


@router.get("", response_model=ProfileResponse)
def get_profile(user: User = Depends(get_current_user)) -> ProfileResponse:
    return _to_response(user)


@router.patch("", response_model=ProfileResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    changes = payload.model_dump(exclude_unset=True)
    if "display_name" in changes:
        user.display_name = (payload.display_name or "").strip() or None
    if "goals" in changes:
        user.goals = (payload.goals or "").strip()
    if payload.theme is not None:
        user.theme = payload.theme.value
    if payload.notifications is not None:
        user.notifications = payload.notifications
    if payload.data_retention_days is not None:
        user.data_retention_days = payload.data_retention_days
    if payload.onboarding_completed is not None:
        user.onboarding_completed = payload.onboarding_completed
    db.commit()
    db.refresh(user)
    return _to_response(user)


@router.get("/export")
def export_checkins(
    export_format: ExportFormat = Query(default=ExportFormat.json, alias="format"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    rows = (
        db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user.id)
        .order_by(DailyCheckIn.checkin_date.asc())
        .all()
    )
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    if export_format == ExportFormat.csv:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_COLUMNS)
        for row in rows:
            recs = recommendations_of(row)
            writer.writerow(
                [
                    row.checkin_date.isoformat(),
                    row.mood,
                    row.sleep,
                    row.diet,
                    row.exercise,
                    row.stressors,
                    row.user_goals,
                    row.calm_index,
                    row.productivity_index,
                    " | ".join(recs["personalized"]),
                    " | ".join(recs["habitTools"]),
                ]
            )
        return Response(
            content=output.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="braincoach_checkins_{stamp}.csv"'},
        )

    payload = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "email": user.email,
        "checkins": [
            {
                "date": row.checkin_date.isoformat(),
                "checkIn": checkin_snapshot(row),
                "userGoals": row.user_goals,
                "scores": score_snapshot(row),
                "recommendations": recommendations_of(row),
            }
            for row in rows
        ],
    }
    return Response(
        content=json.dumps(payload, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="braincoach_checkins_{stamp}.json"'},
    )


@router.delete("/data", response_model=DataDeleteResponse)
def delete_my_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> DataDeleteResponse:
    deleted = delete_user_data(db, user.id)
    logger.info("user_data_deleted user_id=%s counts=%s", user.id, deleted)
    return DataDeleteResponse(deleted=deleted)
