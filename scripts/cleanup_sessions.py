#!/usr/bin/env python3
"""Delete expired sessions.

Meant for cron (e.g. hourly); the request path only removes expired sessions
it happens to read.

Usage:
    python scripts/cleanup_sessions.py            # Delete expired sessions
    python scripts/cleanup_sessions.py --dry-run  # Count only
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select

from app.portal.models import UserSession, utcnow
from app.portal.sessions import SessionStore
from scripts._db_utils import database_url, session_scope


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete expired sessions")
    parser.add_argument("--dry-run", action="store_true", help="Count expired sessions without deleting")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    args = parser.parse_args()

    with session_scope(database_url(args.database_url)) as s:
        if args.dry_run:
            count = s.scalar(select(func.count()).select_from(UserSession).where(UserSession.expires_at < utcnow()))
            print(f"{count} expired session(s) would be deleted.")
            return
        count = SessionStore().cleanup_expired(s)
    print(f"Deleted {count} expired session(s).")


if __name__ == "__main__":
    main()
