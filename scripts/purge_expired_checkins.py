import argparse
import os
from pathlib import Path
from typing import Optional

from braincoach.core.retention import expired_checkin_count, purge_expired_checkins
from braincoach.db.models import User
from braincoach.db.session import SessionLocal, configure_database


def resolve_db_path(override: Optional[str]) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    return Path(os.getenv("DB_PATH", "/var/data/braincoach.db")).expanduser().resolve()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Delete check-ins older than each user's data retention window."
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override SQLite DB path. Defaults to DB_PATH env or app default.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show expired check-ins per user only; do not delete.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm destructive operation.",
    )
    args = parser.parse_args()

    if not args.dry_run and not args.yes:
        parser.error("Add --yes to confirm deletion")

    db_path = resolve_db_path(args.db_path)
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1

    configure_database(str(db_path))
    db = SessionLocal()
    try:
        print(f"Target DB: {db_path}")
        if args.dry_run:
            for user in db.query(User).order_by(User.id.asc()).all():
                count = expired_checkin_count(db, user)
                if count:
                    print(f"  user {user.id} ({user.data_retention_days}d): {count} expired")
            return 0

        deleted = purge_expired_checkins(db)
        print(f"Deleted check-ins: {sum(deleted.values())}")
        for user_id, count in sorted(deleted.items()):
            print(f"  user {user_id}: {count}")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
