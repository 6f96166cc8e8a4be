import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.redline.models import Base, User
from scripts._db_utils import create_script_engine, script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the SUPER_ADMIN account in an idempotent way.
    Does NOT overwrite an existing admin user's password; only lifts its site role.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@redline.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///redline.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Site Admin",
                password_hash=generate_password_hash(admin_password),
                site_role="SUPER_ADMIN",
                is_active=True,
            )
            s.add(user)
        elif user.site_role != "SUPER_ADMIN":
            user.site_role = "SUPER_ADMIN"

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def create_tables(*, database_url: str | None = None) -> None:
    """Local dev shortcut: create every table without Alembic."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///redline.db").strip()
    engine = create_script_engine(db_url)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()


def main() -> None:
    if "--create-tables" in sys.argv[1:]:
        create_tables()
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
