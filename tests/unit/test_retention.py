from datetime import date, timedelta

from braincoach.core.retention import delete_user_data, expired_checkin_count, purge_expired_checkins
from braincoach.db.models import ChatMessage, ChatThread, DailyCheckIn, User


def test_purge_respects_each_users_retention(create_user, seed_checkin, db_session) -> None:
    today = date(2026, 10, 17)
    short = create_user(with_ai_config=False, retention_days=7)
    keeper = create_user(with_ai_config=False, retention_days=365)
    for user in (short, keeper):
        seed_checkin(user.id, today - timedelta(days=30))
        seed_checkin(user.id, today - timedelta(days=2))

    assert expired_checkin_count(db_session, short, today=today) == 1
    assert expired_checkin_count(db_session, keeper, today=today) == 0

    deleted = purge_expired_checkins(db_session, today=today)
    assert deleted.get(short.id) == 1
    assert keeper.id not in deleted
    assert db_session.query(DailyCheckIn).filter(DailyCheckIn.user_id == short.id).count() == 1
    assert db_session.query(DailyCheckIn).filter(DailyCheckIn.user_id == keeper.id).count() == 2


def test_delete_user_data_keeps_account_and_other_users(create_user, seed_checkin, db_session) -> None:
    today = date(2026, 10, 17)
    owner = create_user(with_ai_config=False)
    other = create_user(with_ai_config=False)
    seed_checkin(owner.id, today)
    seed_checkin(other.id, today)
    thread = ChatThread(user_id=owner.id, title="Focus")
    db_session.add(thread)
    db_session.flush()
    db_session.add(ChatMessage(thread_id=thread.id, user_id=owner.id, role="user", content="hi"))
    db_session.commit()

    counts = delete_user_data(db_session, owner.id)

    assert counts["daily_checkins"] == 1
    assert counts["chat_threads"] == 1
    assert counts["chat_messages"] == 1
    db_session.expire_all()
    assert db_session.query(DailyCheckIn).filter(DailyCheckIn.user_id == other.id).count() == 1
    assert db_session.get(User, owner.id) is not None
