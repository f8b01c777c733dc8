from fastapi import Request, HTTPException, status
from typing import Optional, Callable
import logging
from auth import decode_access_token
from database import database
from models import UserRole, SubscriptionState

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload or not payload.get("user_id"):
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def load_user_role(user_id: str) -> Optional[str]:
    """Current role of ``user_id`` as stored, or None for an unknown user."""
    db = database.get_db()
    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "role": 1})
    if not user:
        return None
    return user.get("role") or UserRole.ROLE_USER.value

async def require_admin(request: Request) -> dict:
    """Require admin role, checked against the stored user rather than the token claim."""
    user = await require_auth(request)
    role = await load_user_role(user["user_id"])

    if role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if role != UserRole.ROLE_ADMIN.value:
        logger.warning(f"Admin access denied for user_id={user['user_id']} stored_role={role}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return {**user, "role": role}

async def enforce_subscription(request: Request, resource_key: Optional[str] = None) -> dict:
    """Allow the request only with an active subscription entitling ``resource_key``.

    Entitlement is always derived from payment history. When derivation
    disagrees with a snapshot that still says active, the snapshot is reset
    as a side effect; that correction never affects the response.
    """
    from services.reconciliation_service import reconciliation_service

    user = await require_auth(request)
    user_id = user["user_id"]
    derived = await reconciliation_service.get_status(user_id)

    if derived.status != SubscriptionState.ACTIVE:
        # Only touches snapshots that still claim active; never raises
        await reconciliation_service.invalidate_stale_snapshot(user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error_code": "SUBSCRIPTION_REQUIRED",
                "message": "An active subscription is required",
                "status": derived.status.value,
            }
        )

    if resource_key and resource_key not in derived.allowed_pages:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error_code": "PLAN_UPGRADE_REQUIRED",
                "message": f"Your {derived.plan} plan does not include {resource_key}",
                "plan": derived.plan,
            }
        )

    request.state.subscription = derived
    return user

def require_subscription(resource_key: Optional[str] = None) -> Callable:
    """Dependency factory: active subscription, optionally entitling a fixed page."""
    async def guard(request: Request) -> dict:
        return await enforce_subscription(request, resource_key)
    return guard

async def require_page_access(request: Request, page: str) -> dict:
    """Dependency gating on the ``page`` path parameter."""
    return await enforce_subscription(request, page)
