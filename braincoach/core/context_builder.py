import json
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from braincoach.core.insights import HistoryPoint
from braincoach.db.models import ChatMessage, ChatThread, DailyCheckIn, User

SCORE_HISTORY_DAYS = 7
DEFAULT_GOALS = "Reduce stress and improve focus."
GREETING = "Hello! I'm your AI Brain Coach. How can I help you today?"
RECENT_CHAT_TURNS = 20

# Shown until the first check-in of the day; an empty diet keeps chat in its check-in-first state.
DEFAULT_CHECKIN: dict[str, Any] = {
    "mood": 7,
    "sleep": 8,
    "diet": "",
    "exercise": "",
    "stressors": "",
}
EMPTY_SCORES: dict[str, float] = {"calmIndex": 0, "productivityIndex": 0}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _load_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]


def _number(value: float) -> float:
    # Keep whole numbers as ints so 75.0 is reported as 75.
    return int(value) if float(value).is_integer() else value


def checkin_snapshot(row: DailyCheckIn) -> dict[str, Any]:
    return {
        "mood": row.mood,
        "sleep": _number(row.sleep),
        "diet": row.diet,
        "exercise": row.exercise,
        "stressors": row.stressors,
    }


def score_snapshot(row: DailyCheckIn) -> dict[str, float]:
    return {"calmIndex": _number(row.calm_index), "productivityIndex": _number(row.productivity_index)}


def recommendations_of(row: DailyCheckIn) -> dict[str, list[str]]:
    return {
        "personalized": _load_list(row.personalized_json),
        "habitTools": _load_list(row.habit_tools_json),
    }


def get_checkin(db: Session, user_id: int, checkin_date: date) -> Optional[DailyCheckIn]:
    return (
        db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user_id, DailyCheckIn.checkin_date == checkin_date)
        .first()
    )


def latest_checkin(db: Session, user_id: int) -> Optional[DailyCheckIn]:
    return (
        db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user_id)
        .order_by(DailyCheckIn.checkin_date.desc())
        .first()
    )


def recent_checkins(db: Session, user_id: int, days: int = SCORE_HISTORY_DAYS) -> list[DailyCheckIn]:
    """The ``days`` most recent check-ins in chronological order."""
    rows = (
        db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user_id)
        .order_by(DailyCheckIn.checkin_date.desc())
        .limit(days)
        .all()
    )
    return list(reversed(rows))


def score_history(db: Session, user_id: int, days: int = SCORE_HISTORY_DAYS) -> list[dict[str, Any]]:
    return [
        {
            "date": row.checkin_date.isoformat(),
            "label": f"{row.checkin_date.strftime('%b')} {row.checkin_date.day}",
            **score_snapshot(row),
        }
        for row in recent_checkins(db, user_id, days)
    ]


def history_points(rows: list[DailyCheckIn]) -> list[HistoryPoint]:
    return [
        HistoryPoint(
            checkin_date=row.checkin_date,
            mood=row.mood,
            sleep=row.sleep,
            calm_index=row.calm_index,
            productivity_index=row.productivity_index,
        )
        for row in rows
    ]


def grounding_snapshots(db: Session, user_id: int) -> tuple[dict[str, Any], dict[str, float]]:
    """Check-in and score snapshots the coach should answer against."""
    row = latest_checkin(db, user_id)
    if not row:
        return dict(DEFAULT_CHECKIN), dict(EMPTY_SCORES)
    return checkin_snapshot(row), score_snapshot(row)


def recent_chat_turns(db: Session, user_id: int, limit: int = RECENT_CHAT_TURNS) -> list[dict[str, str]]:
    thread = (
        db.query(ChatThread)
        .filter(ChatThread.user_id == user_id)
        .order_by(ChatThread.last_message_at.desc(), ChatThread.id.desc())
        .first()
    )
    turns = [{"role": "assistant", "content": GREETING}]
    if not thread:
        return turns
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.thread_id == thread.id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    turns.extend({"role": row.role, "content": row.content} for row in reversed(rows))
    return turns


def build_daily_state(db: Session, user: User, today: Optional[date] = None) -> dict[str, Any]:
    goals = user.goals or DEFAULT_GOALS
    row = get_checkin(db, user.id, today or utc_today())
    if row:
        check_in = {**checkin_snapshot(row), "userGoals": row.user_goals or goals}
        scores = score_snapshot(row)
        recommendations = recommendations_of(row)
    else:
        check_in = {**DEFAULT_CHECKIN, "userGoals": goals}
        scores = dict(EMPTY_SCORES)
        recommendations = {"personalized": [], "habitTools": []}
    return {
        "checkIn": check_in,
        "scores": scores,
        "scoreHistory": score_history(db, user.id),
        "recommendations": recommendations,
        "chatHistory": recent_chat_turns(db, user.id),
        "userGoals": goals,
    }
