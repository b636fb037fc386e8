"""
Seed the platform super admin and, optionally, a demo church.

Idempotent: existing users keep their passwords and existing churches are
left untouched.

Environment:
  ADMIN_EMAIL / ADMIN_PASSWORD    super admin credentials
  DEMO_CHURCH_SUBDOMAIN           create a demo church on this subdomain (optional)
  DEMO_CHURCH_NAME                display name for the demo church

Usage:
  python scripts/init_db.py
"""
import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.steward.constants import GUEST_ENVELOPE_NUMBER, GUEST_MEMBERSHIP_CODE  # noqa: E402
from app.steward.models import Church, ChurchUser, User  # noqa: E402
from app.steward.modules.giving.service import seed_default_categories  # noqa: E402
from app.steward.modules.members.models import Member  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def _ensure_demo_church(s, subdomain: str, name: str, admin: User) -> None:
    church = s.query(Church).filter(Church.subdomain == subdomain).one_or_none()
    if church is not None:
        print(f"Demo church '{subdomain}' already exists (id={church.id}).")
        return
    church = Church(name=name, subdomain=subdomain, subscription_plan="premium", subscription_status="active")
    s.add(church)
    s.flush()
    seed_default_categories(s, church)
    s.add(
        Member(
            church_id=church.id,
            first_name="Guest",
            last_name="Giving",
            membership_code=GUEST_MEMBERSHIP_CODE,
            envelope_number=GUEST_ENVELOPE_NUMBER,
            participation="active",
        )
    )
    s.add(ChurchUser(user_id=admin.id, church_id=church.id, role="admin"))
    print(f"Created demo church '{subdomain}'.")


def seed_only(database_url: str | None = None) -> None:
    """
    Seed without creating tables (assumes `alembic upgrade head` already ran).
    Does not overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@steward.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///steward.db").strip()

    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Platform Admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
                is_super_admin=True,
            )
            s.add(user)
            s.flush()
        elif not user.is_super_admin:
            user.is_super_admin = True

        demo = (os.environ.get("DEMO_CHURCH_SUBDOMAIN") or "").strip().lower()
        if demo:
            _ensure_demo_church(s, demo, (os.environ.get("DEMO_CHURCH_NAME") or "Demo Church").strip(), user)

    print("Initialized database (seed_only).")
    print(f"Super admin email: {admin_email}")
    print("Super admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
