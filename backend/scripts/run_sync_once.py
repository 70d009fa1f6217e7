#!/usr/bin/env python3
"""
Run one GA4 sync outside the API/worker (useful for backfills and smoke tests).
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.database import SessionLocal
from app.core.errors import AnalyticsSyncError
from app.services.analytics_pipeline import run_scheduled_sync, run_user_sync_for_days
from app.services.event_detection import detect_and_store_events


async def run_once(user_id: str | None, days: int, detect_only: bool) -> int:
    if user_id is None:
        outcomes = await run_scheduled_sync(window_days=days)
        print(json.dumps([outcome.to_dict() for outcome in outcomes], indent=2))
        return 0 if all(outcome.status == "success" for outcome in outcomes) else 1

    db = SessionLocal()
    try:
        if detect_only:
            created = detect_and_store_events(db, user_id)
            db.commit()
            print({"user_id": user_id, "events_created": len(created)})
            return 0

        try:
            result = await run_user_sync_for_days(db, user_id, days)
        except AnalyticsSyncError as e:
            print(f"Sync failed for user {user_id}: {e}")
            return 2
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.ok else 1
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync GA4 data once.")
    parser.add_argument("--user", default=None, help="User id; omit to sync every connected user")
    parser.add_argument("--days", type=int, default=30, help="Trailing window in days")
    parser.add_argument(
        "--detect-only",
        action="store_true",
        help="Skip the GA4 fetch and only re-run event detection for --user.",
    )
    args = parser.parse_args()
    if args.detect_only and not args.user:
        parser.error("--detect-only requires --user")
    return asyncio.run(run_once(user_id=args.user, days=args.days, detect_only=args.detect_only))


if __name__ == "__main__":
    sys.exit(main())
