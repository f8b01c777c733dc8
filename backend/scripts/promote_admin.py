"""
Promote a user to admin (or demote back to user).

There is no API for granting the admin role; use this from a trusted shell.

Usage (from backend/):
  python -m scripts.promote_admin <username>
  python -m scripts.promote_admin <username> --demote
"""
import asyncio
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from models import UserRole
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def set_role(db, username: str, role: UserRole) -> bool:
    """Returns True if the user exists (whether or not the role changed)."""
    username = username.strip()
    if not username:
        logger.error("Username is required")
        return False

    user = await db.users.find_one({"username": username}, {"_id": 0, "user_id": 1, "role": 1})
    if not user:
        logger.warning("No user found with username: %s", username)
        return False
    if user.get("role") == role.value:
        logger.info("%s already has role %s; no change.", username, role.value)
        return True

    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {"role": role.value, "updated_at": datetime.now(timezone.utc)}}
    )
    logger.info("Set role %s for %s (user_id=%s)", role.value, username, user["user_id"])
    return True


def main():
    parser = argparse.ArgumentParser(description="Grant or revoke the admin role")
    parser.add_argument("username")
    parser.add_argument("--demote", action="store_true", help="Set role back to user")
    args = parser.parse_args()
    role = UserRole.ROLE_USER if args.demote else UserRole.ROLE_ADMIN

    async def _():
        async with get_db_context() as db:
            return await set_role(db, args.username, role)

    ok = asyncio.run(_())
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
