"""User activity log (login, logout, register, password change)."""
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import ActivityAction, UserActivity

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


class ActivityService:

    async def log_activity(
        self,
        action: ActivityAction,
        username: Optional[str] = None,
        user_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[UserActivity]:
        """Append an activity row. Logging failures never fail the caller."""
        activity = UserActivity(
            action=action,
            username=username,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            details=details,
            metadata=metadata,
        )
        try:
            db = database.get_db()
            await db.user_activities.insert_one(activity.model_dump())
        except Exception as e:
            logger.error(f"Failed to log activity {activity.action} for {username or user_id}: {e}")
            return None
        return activity

    async def list_activities(self, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, MAX_LIMIT))
        db = database.get_db()
        cursor = db.user_activities.find({}, {"_id": 0}).sort("timestamp", -1).limit(limit)
        return await cursor.to_list(length=limit)


activity_service = ActivityService()
