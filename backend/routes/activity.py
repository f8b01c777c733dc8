from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from middleware import require_admin
from models import ActivityLogRequest
from services.activity_service import activity_service, DEFAULT_LIMIT, MAX_LIMIT
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/activity", tags=["activity"])

@router.post("/log", status_code=status.HTTP_201_CREATED)
async def log_activity(request: Request, data: ActivityLogRequest):
    """Record a client-side activity (public)."""
    activity = await activity_service.log_activity(
        data.action,
        username=data.username,
        user_id=data.user_id,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        details=data.details,
        metadata=data.metadata,
    )
    if activity is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to log activity"
        )
    return {"message": "Activity logged", "activity_id": activity.activity_id}

@router.get("")
async def list_activities(
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    admin: dict = Depends(require_admin)
):
    activities = await activity_service.list_activities(limit=limit)
    return {"activities": activities, "count": len(activities)}
