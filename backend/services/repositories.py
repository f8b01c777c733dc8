"""Collection wrappers for payments and users.

The reconciliation engine only talks to these, so tests can swap in
in-memory fakes with the same method names.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from pymongo.errors import DuplicateKeyError

from database import database
from models import PaymentStatus, SubscriptionState

logger = logging.getLogger(__name__)


class PaymentRepository:
    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        return self.db if self.db is not None else database.get_db()

    async def insert(self, doc: Dict[str, Any]) -> bool:
        """Insert a new payment record. Returns False if the reference already exists."""
        db = self._get_db()
        try:
            await db.payments.insert_one(dict(doc))
        except DuplicateKeyError:
            logger.warning("Duplicate payment reference=%s ignored", doc.get("reference"))
            return False
        return True

    async def find_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.payments.find_one({"reference": reference}, {"_id": 0})

    async def find_success_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        db = self._get_db()
        cursor = db.payments.find(
            {"user_id": user_id, "status": PaymentStatus.SUCCESS.value},
            {"_id": 0},
        ).sort("subscription_end", -1)
        return await cursor.to_list(length=None)

    async def find_pending(
        self,
        user_id: Optional[str] = None,
        created_before: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        db = self._get_db()
        query: Dict[str, Any] = {"status": PaymentStatus.PENDING.value}
        if user_id is not None:
            query["user_id"] = user_id
        if created_before is not None:
            query["created_at"] = {"$lt": created_before}
        cursor = db.payments.find(query, {"_id": 0}).sort("created_at", -1)
        return await cursor.to_list(length=None)

    async def transition_from_pending(self, reference: str, fields: Dict[str, Any]) -> bool:
        """Conditionally move a pending record to a terminal state.

        Only one caller can win for a given reference; the return value says
        whether this call was it.
        """
        return await self.transition(reference, PaymentStatus.PENDING.value, fields)

    async def transition(self, reference: str, from_status: str, fields: Dict[str, Any]) -> bool:
        """Update ``reference`` only while it is still in ``from_status``."""
        db = self._get_db()
        result = await db.payments.update_one(
            {"reference": reference, "status": from_status},
            {"$set": fields},
        )
        return result.modified_count == 1

    async def distinct_users_with_success(self) -> List[str]:
        db = self._get_db()
        return await db.payments.distinct("user_id", {"status": PaymentStatus.SUCCESS.value})


class UserRepository:
    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        return self.db if self.db is not None else database.get_db()

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})

    async def set_subscription(self, user_id: str, snapshot: Dict[str, Any], updated_at: datetime):
        db = self._get_db()
        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {"subscription": snapshot, "updated_at": updated_at}},
        )

    async def clear_active_subscription(self, user_id: str, updated_at: datetime) -> bool:
        """Reset a snapshot that still claims ``active``. Returns True if it changed."""
        db = self._get_db()
        result = await db.users.update_one(
            {"user_id": user_id, "subscription.status": SubscriptionState.ACTIVE.value},
            {"$set": {
                "subscription": {
                    "plan": "none",
                    "start_date": None,
                    "end_date": None,
                    "status": SubscriptionState.INACTIVE.value,
                    "reference": None,
                },
                "updated_at": updated_at,
            }},
        )
        return result.modified_count == 1
