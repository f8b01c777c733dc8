"""Webhook Routes - Paystack payment notifications.

POST /api/webhooks/paystack
- HMAC-SHA512 signature in x-paystack-signature, keyed with PAYSTACK_SECRET_KEY
- charge.success triggers verification by reference (no session, source=webhook)
- Verification itself re-asks Paystack, so the event body is never trusted for state
"""
from fastapi import APIRouter, HTTPException, Request, Header, status
from models import AuditAction, PaymentSource
from services.errors import PaymentNotFound, ProviderError
from services.paystack_client import paystack_client
from services.reconciliation_service import reconciliation_service
from utils.audit import create_audit_log
import logging
import json

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str = Header(None, alias="x-paystack-signature")
):
    payload = await request.body()

    if not paystack_client.verify_signature(payload, x_paystack_signature):
        logger.warning("Paystack webhook rejected: invalid signature")
        await create_audit_log(
            action=AuditAction.WEBHOOK_REJECTED,
            actor_role="system",
            metadata={"provider": "paystack", "reason": "invalid_signature"},
            ip_address=request.client.host if request.client else None,
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    # Signed, valid JSON, but not an event object
    data = event.get("data") if isinstance(event, dict) else None
    if not isinstance(event, dict) or (data is not None and not isinstance(data, dict)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    event_type = event.get("event")
    reference = (data or {}).get("reference")
    logger.info("WEBHOOK_RECEIVED provider=paystack event=%s reference=%s", event_type, reference)

    if event_type != "charge.success" or not reference:
        return {"status": "ignored", "event": event_type}

    try:
        result = await reconciliation_service.verify(reference, source=PaymentSource.WEBHOOK.value)
    except PaymentNotFound:
        # Not ours (or created elsewhere); acknowledge so Paystack stops retrying
        logger.warning("Paystack webhook for unknown reference=%s", reference)
        return {"status": "ignored", "reason": "unknown_reference"}
    except ProviderError as e:
        # Non-2xx makes Paystack retry later
        logger.error(f"Paystack webhook verification deferred for {reference}: {e.message}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Verification deferred")

    return {"status": "processed", "reference": reference, "payment_status": result.status.value}
