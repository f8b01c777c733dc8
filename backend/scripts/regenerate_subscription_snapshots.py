"""
Regenerate every user's subscription snapshot from payment history.

Use after a data repair or a plan catalog change. Safe to run repeatedly;
the snapshot is a cache and payments are never modified.

Usage (from backend/):
  python -m scripts.regenerate_subscription_snapshots
  python -m scripts.regenerate_subscription_snapshots --user-id <user_id>
"""
import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from job_runner import run_subscription_snapshot_regeneration
from services.reconciliation_service import ReconciliationService
from services.repositories import PaymentRepository, UserRepository
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def run(user_id: str = None) -> int:
    async with get_db_context() as db:
        service = ReconciliationService(payments=PaymentRepository(db), users=UserRepository(db))
        if user_id:
            snapshot = await service.refresh_snapshot(user_id)
            logger.info("Snapshot for %s: plan=%s status=%s", user_id, snapshot["plan"], snapshot["status"])
            return 1
        result = await run_subscription_snapshot_regeneration(service)
        return result["count"]


def main():
    parser = argparse.ArgumentParser(description="Regenerate subscription snapshots from payment history")
    parser.add_argument("--user-id", help="Only this user")
    args = parser.parse_args()

    count = asyncio.run(run(user_id=args.user_id))
    print(f"Snapshots refreshed: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
