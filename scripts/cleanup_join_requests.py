#!/usr/bin/env python3
"""
Remove join requests that can no longer matter.

- PENDING requests whose user is already a member (left behind by invite joins).
- APPROVED/REJECTED requests older than --days (default 90).

Usage:
  python scripts/cleanup_join_requests.py            # dry run
  python scripts/cleanup_join_requests.py --apply
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.redline.models import utcnow
from app.redline.modules.clubs.models import ClubJoinRequest, ClubMember
from scripts._db_utils import script_session


def find_stale(s, *, days: int) -> tuple[list[ClubJoinRequest], list[ClubJoinRequest]]:
    orphaned = (
        s.query(ClubJoinRequest)
        .join(
            ClubMember,
            (ClubMember.user_id == ClubJoinRequest.user_id) & (ClubMember.club_id == ClubJoinRequest.club_id),
        )
        .filter(ClubJoinRequest.status == "PENDING")
        .all()
    )
    cutoff = utcnow() - timedelta(days=days)
    processed = (
        s.query(ClubJoinRequest)
        .filter(ClubJoinRequest.status != "PENDING", ClubJoinRequest.reviewed_at < cutoff)
        .all()
    )
    return orphaned, processed


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--days", type=int, default=90, help="Age in days after which processed requests are removed")
    parser.add_argument("--apply", action="store_true", help="Delete rows (default is a dry run)")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///redline.db").strip()
    with script_session(db_url) as s:
        orphaned, processed = find_stale(s, days=args.days)
        print(f"Pending requests from existing members: {len(orphaned)}")
        print(f"Processed requests older than {args.days} days: {len(processed)}")
        if not args.apply:
            print("Dry run; pass --apply to delete.")
            return
        for jr in orphaned + processed:
            s.delete(jr)
    print("Deleted.")


if __name__ == "__main__":
    main()
