from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from braincoach.db.models import ChatMessage, ChatThread, DailyCheckIn, ErrorEvent, User


def _today() -> date:
    return datetime.now(timezone.utc).date()


def expired_checkin_count(db: Session, user: User, today: Optional[date] = None) -> int:
    cutoff = (today or _today()) - timedelta(days=user.data_retention_days)
    return (
        db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user.id, DailyCheckIn.checkin_date < cutoff)
        .count()
    )


def purge_expired_checkins(db: Session, today: Optional[date] = None) -> dict[int, int]:
    """Delete check-ins older than each user's retention window. Returns deleted rows per user id."""
    current = today or _today()
    deleted: dict[int, int] = {}
    for user in db.query(User).all():
        cutoff = current - timedelta(days=user.data_retention_days)
        count = (
            db.query(DailyCheckIn)
            .filter(DailyCheckIn.user_id == user.id, DailyCheckIn.checkin_date < cutoff)
            .delete(synchronize_session=False)
        )
        if count:
            deleted[user.id] = int(count)
    db.commit()
    return deleted


def delete_user_data(db: Session, user_id: int) -> dict[str, int]:
    """Remove everything the user has generated while keeping the account itself."""
    counts = {
        "chat_messages": db.query(ChatMessage).filter(ChatMessage.user_id == user_id).delete(synchronize_session=False),
        "chat_threads": db.query(ChatThread).filter(ChatThread.user_id == user_id).delete(synchronize_session=False),
        "daily_checkins": db.query(DailyCheckIn)
        .filter(DailyCheckIn.user_id == user_id)
        .delete(synchronize_session=False),
        "error_events": db.query(ErrorEvent).filter(ErrorEvent.user_id == user_id).delete(synchronize_session=False),
    }
    db.commit()
    return {table: int(count or 0) for table, count in counts.items()}
