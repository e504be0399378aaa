from braincoach.core import error_tracker
from braincoach.core.error_tracker import fingerprint, make_error_reporter, report_error
from braincoach.db.models import ErrorEvent


def test_fingerprint_is_stable_per_type_and_message() -> None:
    first = fingerprint(ValueError("bad json"))
    assert first == fingerprint(ValueError("bad json"))
    assert first != fingerprint(KeyError("bad json"))
    assert len(first) == 32


def test_report_error_upserts_and_counts_occurrences(create_user, db_session) -> None:
    user = create_user(with_ai_config=False)
    exc = RuntimeError("provider down")

    first = report_error(db_session, exc, flow="checkin", user_id=user.id, severity="high", tags={"source": "test"})
    second = report_error(db_session, exc, flow="checkin", user_id=user.id, severity="high")

    assert first.id == second.id
    row = db_session.query(ErrorEvent).filter(ErrorEvent.id == first.id).one()
    assert row.occurrences == 2
    assert row.error_type == "RuntimeError"
    assert row.tags == "source=test"


def test_unknown_severity_falls_back_to_medium(create_user, db_session) -> None:
    user = create_user(with_ai_config=False)
    row = report_error(db_session, ValueError("odd"), flow="chat", user_id=user.id, severity="urgent")
    assert row.severity == "medium"


def test_disabled_tracking_only_logs(create_user, db_session, monkeypatch, caplog) -> None:
    user = create_user(with_ai_config=False)
    monkeypatch.setattr(error_tracker, "ERROR_TRACKING_ENABLED", False)
    with caplog.at_level("ERROR", logger="uvicorn.error"):
        result = report_error(db_session, ValueError("quiet"), flow="chat", user_id=user.id)
    assert result is None
    assert "tracked_error flow=chat" in caplog.text
    assert db_session.query(ErrorEvent).filter(ErrorEvent.user_id == user.id).count() == 0


def test_pipeline_reporter_records_high_severity(create_user, db_session) -> None:
    user = create_user(with_ai_config=False)
    make_error_reporter(db_session, user.id)(TimeoutError("slow"), "chat")
    row = db_session.query(ErrorEvent).filter(ErrorEvent.user_id == user.id).one()
    assert (row.flow, row.severity, row.tags) == ("chat", "high", "source=pipeline")
