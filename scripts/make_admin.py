#!/usr/bin/env python3
"""Set a user's site role (idempotent).

Usage:
  python scripts/make_admin.py --email driver@example.com
  python scripts/make_admin.py --email driver@example.com --role SUPER_ADMIN
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.redline.models import User
from app.redline.permissions import SITE_ROLES
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email to promote")
    parser.add_argument("--role", default="ADMIN", choices=SITE_ROLES, help="Site role to assign")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///redline.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email.strip())).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            sys.exit(1)
        if user.site_role == args.role:
            print(f"User already has site role {args.role}: {args.email}")
            return
        user.site_role = args.role
    print(f"Site role {args.role} set for {args.email}")


if __name__ == "__main__":
    main()
