"""Payment Routes

Endpoints:
- GET /api/payments/verify?reference= - Verify a payment (owner only)
- GET /api/payments/bot/verify?reference= - Verify from the bot channel (no login, by reference)
- GET /api/payments/details?reference= - Payment record (owner only)
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
import logging

from middleware import require_auth
from models import PaymentSource, ReconciliationResult
from services.errors import DomainError, raise_http
from services.reconciliation_service import reconciliation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


async def _verify(reference: str, requesting_user_id, source: str) -> ReconciliationResult:
    try:
        return await reconciliation_service.verify(
            reference, requesting_user_id=requesting_user_id, source=source
        )
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Payment verification error for {reference}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment verification failed"
        )


@router.get("/verify", response_model=ReconciliationResult)
async def verify_payment(reference: str = Query(..., min_length=1), user: dict = Depends(require_auth)):
    return await _verify(reference, user["user_id"], PaymentSource.WEB.value)


@router.get("/bot/verify", response_model=ReconciliationResult)
async def verify_payment_bot(reference: str = Query(..., min_length=1)):
    """Public channel: matched by reference only, never by session."""
    return await _verify(reference, None, PaymentSource.BOT.value)


@router.get("/details")
async def get_payment_details(reference: str = Query(..., min_length=1), user: dict = Depends(require_auth)):
    try:
        payment = await reconciliation_service.get_payment_details(reference, user["user_id"])
        return {"payment": payment}
    except DomainError as e:
        raise_http(e)
