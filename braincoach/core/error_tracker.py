import hashlib
import logging
import os
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from braincoach.db.models import ErrorEvent

logger = logging.getLogger("uvicorn.error")

ERROR_TRACKING_ENABLED = os.getenv("ERROR_TRACKING_ENABLED", "1").strip().lower() not in {"0", "false", "no"}

SEVERITIES = ("low", "medium", "high", "critical")

ErrorReporter = Callable[[Exception, str], None]


def fingerprint(exc: BaseException) -> str:
    basis = f"{type(exc).__name__}:{exc}"
    return hashlib.sha256(basis.encode("utf-8")).hexdigest()[:32]


def _format_tags(tags: Optional[dict[str, str]]) -> Optional[str]:
    if not tags:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(tags.items()))[:512]


def report_error(
    db: Session,
    exc: BaseException,
    *,
    flow: str,
    user_id: Optional[int] = None,
    severity: str = "medium",
    tags: Optional[dict[str, str]] = None,
) -> Optional[ErrorEvent]:
    if severity not in SEVERITIES:
        severity = "medium"
    error_fingerprint = fingerprint(exc)
    logger.error(
        "tracked_error flow=%s user_id=%s severity=%s fingerprint=%s type=%s detail=%s",
        flow,
        user_id,
        severity,
        error_fingerprint,
        type(exc).__name__,
        str(exc)[:220],
    )
    if not ERROR_TRACKING_ENABLED:
        return None

    now = datetime.now(timezone.utc)
    try:
        row = (
            db.query(ErrorEvent)
            .filter(
                ErrorEvent.fingerprint == error_fingerprint,
                ErrorEvent.flow == flow,
                ErrorEvent.user_id == user_id,
            )
            .first()
        )
        if row:
            row.occurrences += 1
            row.last_seen_at = now
            row.severity = severity
        else:
            row = ErrorEvent(
                user_id=user_id,
                fingerprint=error_fingerprint,
                flow=flow,
                severity=severity,
                error_type=type(exc).__name__[:128],
                message=(str(exc) or type(exc).__name__)[:1024],
                tags=_format_tags(tags),
                occurrences=1,
                first_seen_at=now,
                last_seen_at=now,
            )
            db.add(row)
        db.commit()
        return row
    except SQLAlchemyError:
        # The sink must never replace the error the user is about to see.
        db.rollback()
        logger.exception("error_tracker_persist_failed flow=%s fingerprint=%s", flow, error_fingerprint)
        return None


def make_error_reporter(db: Session, user_id: Optional[int]) -> ErrorReporter:
    def _report(exc: Exception, flow: str) -> None:
        report_error(db, exc, flow=flow, user_id=user_id, severity="high", tags={"source": "pipeline"})

    return _report
