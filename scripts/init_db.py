import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import AccountStatus, User
from app.portal.passwords import hash_password
from app.portal.validation import normalize_email
from scripts import _db_utils


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user in an idempotent way.
    Does NOT overwrite an existing user's password.
    """
    admin_email = normalize_email(os.environ.get("ADMIN_EMAIL") or "admin@example.com")
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me-now"
    admin_name = (os.environ.get("ADMIN_NAME") or "Admin User").strip()

    with _db_utils.session_scope(_db_utils.database_url(database_url)) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                name=admin_name,
                email=admin_email,
                password_hash=hash_password(admin_password),
                status=AccountStatus.ACTIVE,
                email_verified=True,
            )
            s.add(user)
            print(f"Created admin user: {admin_email}")
        else:
            print(f"Admin user already exists: {admin_email}")

    print("Initialized database (seed_only).")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
