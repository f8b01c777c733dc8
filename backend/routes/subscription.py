"""Subscription Routes

Endpoints:
- GET  /api/subscription/plans - Plan catalog (public)
- POST /api/subscription/initialize - Start a Paystack payment for a plan
- GET  /api/subscription/status - Derived subscription status
- GET  /api/subscription/check-access?page= - Whether the plan entitles a page
- GET  /api/subscription/pages/{page} - Gate a premium page (403 when not entitled)
- POST /api/subscription/admin/renew/{user_id} - Admin grant without payment
- GET  /api/subscription/admin-data - Admin overview
- GET  /api/subscription/admin/payments/{reference}/audit - Admin audit trail of one payment
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from datetime import timedelta
import logging

from middleware import require_admin, require_auth, require_page_access, require_subscription
from models import AdminRenewRequest, InitializePaymentRequest, PaymentSource
from services.errors import DomainError, raise_http
from services.plan_catalog import list_plans
from services.reconciliation_service import reconciliation_service
from services.reporting_service import reporting_service
from utils.audit import get_audit_logs_for_resource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("/plans")
async def get_plans():
    """Available plans. No auth required - for the pricing page."""
    return {"plans": [plan.to_dict() for plan in list_plans()]}


@router.post("/initialize")
async def initialize_payment(data: InitializePaymentRequest, user: dict = Depends(require_auth)):
    try:
        result = await reconciliation_service.initiate(
            user_id=user["user_id"],
            plan=data.plan,
            contact={"email": data.email, "full_name": data.full_name, "phone": data.phone},
            source=PaymentSource.WEB.value,
        )
        return {"message": "Payment initialized", **result.model_dump()}
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Payment initialization error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initialize payment"
        )


@router.get("/status")
async def get_subscription_status(user: dict = Depends(require_auth)):
    return await reconciliation_service.get_status(user["user_id"])


@router.get("/check-access")
async def check_page_access(page: str = Query(..., min_length=1), user: dict = Depends(require_auth)):
    has_access = await reconciliation_service.check_access(user["user_id"], page)
    return {"page": page, "has_access": has_access}


@router.get("/dashboard")
async def subscriber_dashboard(request: Request, user: dict = Depends(require_subscription())):
    """Landing data for any active subscriber."""
    derived = request.state.subscription
    return {
        "username": user.get("username"),
        "plan": derived.plan,
        "allowed_pages": derived.allowed_pages,
        "time_remaining": derived.time_remaining,
    }


@router.get("/pages/{page}")
async def get_page_access(page: str, request: Request, user: dict = Depends(require_page_access)):
    derived = request.state.subscription
    return {
        "page": page,
        "has_access": True,
        "plan": derived.plan,
        "subscription_end": derived.subscription_end,
    }


@router.post("/admin/renew/{user_id}")
async def admin_renew_subscription(
    user_id: str,
    data: AdminRenewRequest,
    admin: dict = Depends(require_admin)
):
    """Grant a plan without payment. Audited."""
    try:
        duration = timedelta(days=data.duration_days) if data.duration_days else None
        result = await reconciliation_service.admin_renew(
            user_id=user_id,
            plan=data.plan,
            duration_override=duration,
            actor_id=admin["user_id"],
        )
        return {"message": "Subscription renewed", "result": result}
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin renewal error for {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to renew subscription"
        )


@router.get("/admin-data")
async def get_admin_data(admin: dict = Depends(require_admin)):
    try:
        return await reporting_service.get_subscription_overview()
    except Exception as e:
        logger.error(f"Admin overview error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load admin data"
        )


@router.get("/admin/payments/{reference}/audit")
async def get_payment_audit_trail(
    reference: str,
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(require_admin)
):
    logs = await get_audit_logs_for_resource("payment", reference, limit=limit)
    return {"reference": reference, "audit_logs": logs}
