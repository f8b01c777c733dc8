"""Subscription / payment reconciliation engine.

Drives a payment attempt from initiation through provider verification to
entitlement activation:

    initiate()  -> pending record created after the provider accepts it
    verify()    -> pending -> success | failed, failed -> success (conditional, single winner)
    admin_renew -> synthetic success record, no provider involved

Rules:
1. The payment history is the source of truth; ``user.subscription`` is a
   cache regenerated from derivation after every activation.
2. Exactly one activation per reference. Transitions are conditional
   updates filtered on the status the caller read.
3. Local state changes only on confirmed provider responses. Transport
   failures raise ProviderError and leave the record untouched.
4. Only ``success`` is final. A ``failed`` record is re-checked with the
   provider and reopened to ``success`` if the payment went through after
   all (late bank transfer, expired or superseded attempt).
"""
import asyncio
import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from models import (
    AuditAction,
    InitiateResult,
    PaymentProvider,
    PaymentRecord,
    PaymentSource,
    PaymentStatus,
    ReconciliationResult,
    SubscriptionState,
    SubscriptionStatus,
    UserRole,
)
from services.errors import (
    DuplicatePendingPayment,
    NotFound,
    PaymentNotFound,
    ProviderError,
    Unauthorized,
)
from services.plan_catalog import get_plan
from services.repositories import PaymentRepository, UserRepository
from services.subscription_state import (
    as_utc,
    compute_subscription_window,
    derive_subscription_status,
    select_entitlement_record,
    snapshot_from_status,
)
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 300
PENDING_PAYMENT_GRACE_SECONDS = int(os.getenv("PENDING_PAYMENT_GRACE_SECONDS", str(DEFAULT_GRACE_SECONDS)))
NON_TERMINAL_PROVIDER_STATUSES = frozenset({"ongoing", "pending", "processing", "queued"})

_RESULT_MESSAGES = {
    PaymentStatus.SUCCESS.value: "Payment verified successfully",
    PaymentStatus.FAILED.value: "Payment verification failed",
    PaymentStatus.PENDING.value: "Payment is still being processed",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_grace_window() -> timedelta:
    return timedelta(seconds=PENDING_PAYMENT_GRACE_SECONDS)


def get_callback_url() -> str:
    explicit = (os.getenv("PAYSTACK_CALLBACK_URL") or "").strip()
    if explicit:
        return explicit
    frontend = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    return f"{frontend}/payment-verification.html"


class ReconciliationService:
    """Payment reconciliation state machine."""

    def __init__(
        self,
        payments=None,
        users=None,
        provider=None,
        email=None,
        clock: Optional[Callable[[], datetime]] = None,
        grace_window: Optional[timedelta] = None,
    ):
        self.payments = payments or PaymentRepository()
        self.users = users or UserRepository()
        self._provider = provider
        self._email = email
        self.clock = clock or _utcnow
        self._grace_window = grace_window

    # =========================================================================
    # Collaborators (production defaults resolved on first use)
    # =========================================================================

    @property
    def provider(self):
        if self._provider is None:
            from services.paystack_client import paystack_client
            self._provider = paystack_client
        return self._provider

    @property
    def email(self):
        if self._email is None:
            from services.email_service import email_service
            self._email = email_service
        return self._email

    @property
    def grace_window(self) -> timedelta:
        return self._grace_window if self._grace_window is not None else get_grace_window()

    def _now(self) -> datetime:
        # Mongo keeps millisecond precision; truncate so stored and returned windows match
        now = as_utc(self.clock())
        return now.replace(microsecond=(now.microsecond // 1000) * 1000)

    # =========================================================================
    # Initiation
    # =========================================================================

    async def initiate(
        self,
        user_id: str,
        plan: str,
        contact: Optional[Dict[str, Any]] = None,
        source: str = PaymentSource.WEB.value,
    ) -> InitiateResult:
        plan_def = get_plan(plan)
        user = await self.users.get(user_id)
        if not user:
            raise NotFound("User not found", user_id=user_id)

        await self.expire_stale_pending(user_id=user_id)

        now = self._now()
        pending = await self.payments.find_pending(user_id=user_id)

        for record in pending:
            if record["plan"] == plan_def.name:
                elapsed = int((now - as_utc(record["created_at"])).total_seconds())
                logger.info(
                    "PAYMENT_DUPLICATE_PENDING user_id=%s reference=%s plan=%s elapsed=%ss",
                    user_id, record["reference"], plan_def.name, elapsed,
                )
                raise DuplicatePendingPayment(record["reference"], record["created_at"], elapsed)

        for record in pending:
            superseded = await self.payments.transition_from_pending(
                record["reference"],
                {
                    "status": PaymentStatus.FAILED.value,
                    "failure_reason": "superseded",
                    "updated_at": now,
                },
            )
            if superseded:
                logger.info(
                    "PAYMENT_SUPERSEDED user_id=%s reference=%s old_plan=%s new_plan=%s",
                    user_id, record["reference"], record["plan"], plan_def.name,
                )
                await create_audit_log(
                    action=AuditAction.PAYMENT_SUPERSEDED,
                    actor_role=UserRole.ROLE_USER,
                    actor_id=user_id,
                    user_id=user_id,
                    resource_type="payment",
                    resource_id=record["reference"],
                    metadata={"old_plan": record["plan"], "new_plan": plan_def.name},
                )

        contact = contact or {}
        metadata = {
            "user_id": user_id,
            "plan": plan_def.name,
            "source": source,
            "full_name": contact.get("full_name") or user.get("full_name"),
            "phone": contact.get("phone") or user.get("phone_number"),
        }
        init = await self.provider.initialize(
            email=contact.get("email") or user["email"],
            amount_minor=plan_def.amount_minor,
            callback_url=get_callback_url(),
            metadata=metadata,
        )

        record = PaymentRecord(
            user_id=user_id,
            reference=init["reference"],
            plan=plan_def.name,
            amount=plan_def.amount,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        if not await self.payments.insert(record.model_dump()):
            raise ProviderError("Payment provider returned a reference that is already in use")

        logger.info(
            "PAYMENT_INITIATED user_id=%s reference=%s plan=%s amount=%s source=%s",
            user_id, record.reference, record.plan, record.amount, source,
        )
        await create_audit_log(
            action=AuditAction.PAYMENT_INITIATED,
            actor_role=UserRole.ROLE_USER,
            actor_id=user_id,
            user_id=user_id,
            resource_type="payment",
            resource_id=record.reference,
            metadata={"plan": record.plan, "amount": record.amount, "source": source},
        )

        return InitiateResult(
            reference=init["reference"],
            authorization_url=init["authorization_url"],
            access_code=init.get("access_code"),
        )

    async def expire_stale_pending(self, user_id: Optional[str] = None) -> int:
        """Fail pending records older than the grace window. Returns how many expired."""
        now = self._now()
        stale = await self.payments.find_pending(user_id=user_id, created_before=now - self.grace_window)

        expired = 0
        for record in stale:
            changed = await self.payments.transition_from_pending(
                record["reference"],
                {
                    "status": PaymentStatus.FAILED.value,
                    "failure_reason": "expired",
                    "updated_at": now,
                },
            )
            if not changed:
                continue
            expired += 1
            logger.info(
                "PAYMENT_EXPIRED user_id=%s reference=%s plan=%s",
                record["user_id"], record["reference"], record["plan"],
            )
            await create_audit_log(
                action=AuditAction.PAYMENT_EXPIRED,
                actor_role="system",
                user_id=record["user_id"],
                resource_type="payment",
                resource_id=record["reference"],
                metadata={"plan": record["plan"], "grace_seconds": int(self.grace_window.total_seconds())},
            )
        return expired

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify(
        self,
        reference: str,
        requesting_user_id: Optional[str] = None,
        source: str = PaymentSource.WEB.value,
    ) -> ReconciliationResult:
        """Idempotent verification by reference.

        ``success`` records are answered from storage without calling the
        provider. ``failed`` records are re-checked: a confirmed success
        reopens them, anything else leaves them as stored. Provider-reported
        failure is a result, not an exception.
        """
        record = await self.payments.find_by_reference(reference)
        if not record:
            raise PaymentNotFound(reference)

        if requesting_user_id is not None and record["user_id"] != requesting_user_id:
            logger.warning(
                "Payment verify ownership mismatch reference=%s requester=%s", reference, requesting_user_id
            )
            raise Unauthorized("You are not allowed to verify this payment", reference=reference)

        if record["status"] == PaymentStatus.SUCCESS.value:
            return self._result(record)

        outcome = await self.provider.verify(reference)
        provider_status = outcome.get("status")

        if provider_status in NON_TERMINAL_PROVIDER_STATUSES:
            logger.info("Payment still processing at provider reference=%s status=%s", reference, provider_status)
            return self._result(record)

        now = self._now()
        is_pending = record["status"] == PaymentStatus.PENDING.value
        expected_minor = get_plan(record["plan"]).amount_minor
        paid_minor = outcome.get("amount")
        if provider_status == "success" and paid_minor is not None and int(paid_minor) < expected_minor:
            logger.warning(
                "Payment amount mismatch reference=%s expected=%s paid=%s", reference, expected_minor, paid_minor
            )
            if not is_pending:
                return self._result(record)
            return await self._fail(record, outcome, "amount_mismatch", source, now)

        if provider_status != "success":
            if not is_pending:
                return self._result(record)
            return await self._fail(record, outcome, provider_status or "declined", source, now)

        return await self._activate(record, outcome, source, now)

    async def _activate(
        self,
        record: Dict[str, Any],
        outcome: Dict[str, Any],
        source: str,
        now: datetime,
    ) -> ReconciliationResult:
        reference = record["reference"]
        from_status = record["status"]
        start, end = compute_subscription_window(record["plan"], now)
        won = await self.payments.transition(
            reference,
            from_status,
            {
                "status": PaymentStatus.SUCCESS.value,
                "verified": True,
                "verification_date": now,
                "subscription_start": start,
                "subscription_end": end,
                "payment_response": outcome.get("raw"),
                "failure_reason": None,
                "verification_source": source,
                "updated_at": now,
            },
        )
        stored = await self.payments.find_by_reference(reference)
        if not won:
            logger.info("Payment already reconciled by another request reference=%s", reference)
            return self._result(stored)

        if from_status == PaymentStatus.FAILED.value:
            logger.warning(
                "PAYMENT_REOPENED user_id=%s reference=%s previous_reason=%s source=%s",
                record["user_id"], reference, record.get("failure_reason"), source,
            )
            await create_audit_log(
                action=AuditAction.PAYMENT_REOPENED,
                actor_role="system",
                user_id=record["user_id"],
                resource_type="payment",
                resource_id=reference,
                before_state={"status": from_status, "failure_reason": record.get("failure_reason")},
                after_state={"status": PaymentStatus.SUCCESS.value, "failure_reason": None},
                metadata={"plan": record["plan"], "source": source},
            )

        logger.info(
            "PAYMENT_VERIFIED user_id=%s reference=%s plan=%s start=%s end=%s source=%s",
            record["user_id"], reference, record["plan"], start.isoformat(), end.isoformat(), source,
        )
        await self.refresh_snapshot(record["user_id"])
        await create_audit_log(
            action=AuditAction.PAYMENT_VERIFIED,
            actor_role="system",
            user_id=record["user_id"],
            resource_type="payment",
            resource_id=reference,
            metadata={
                "plan": record["plan"],
                "source": source,
                "subscription_start": start,
                "subscription_end": end,
            },
        )
        asyncio.create_task(self._send_receipt(stored))
        return self._result(stored)

    async def _fail(
        self,
        record: Dict[str, Any],
        outcome: Dict[str, Any],
        reason: str,
        source: str,
        now: datetime,
    ) -> ReconciliationResult:
        reference = record["reference"]
        won = await self.payments.transition_from_pending(
            reference,
            {
                "status": PaymentStatus.FAILED.value,
                "verified": False,
                "failure_reason": reason,
                "payment_response": outcome.get("raw"),
                "verification_source": source,
                "updated_at": now,
            },
        )
        stored = await self.payments.find_by_reference(reference)
        if won:
            logger.info(
                "PAYMENT_FAILED user_id=%s reference=%s plan=%s reason=%s source=%s",
                record["user_id"], reference, record["plan"], reason, source,
            )
            await create_audit_log(
                action=AuditAction.PAYMENT_FAILED,
                actor_role="system",
                user_id=record["user_id"],
                resource_type="payment",
                resource_id=reference,
                metadata={"plan": record["plan"], "reason": reason, "source": source},
            )
        return self._result(stored)

    async def _send_receipt(self, payment: Dict[str, Any]):
        try:
            user = await self.users.get(payment["user_id"])
            if user and user.get("email"):
                await self.email.send_payment_receipt(user, payment)
        except Exception as e:
            logger.error(f"Failed to send payment receipt for {payment.get('reference')}: {e}")

    def _result(self, record: Dict[str, Any]) -> ReconciliationResult:
        message = _RESULT_MESSAGES.get(record["status"], "Payment status unknown")
        if record["status"] == PaymentStatus.FAILED.value and record.get("failure_reason"):
            message = f"{message}: {record['failure_reason']}"
        return ReconciliationResult(
            reference=record["reference"],
            status=record["status"],
            plan=record["plan"],
            amount=record["amount"],
            subscription_start=as_utc(record.get("subscription_start")),
            subscription_end=as_utc(record.get("subscription_end")),
            message=message,
        )

    # =========================================================================
    # Derived state
    # =========================================================================

    async def get_status(self, user_id: str) -> SubscriptionStatus:
        records = await self.payments.find_success_for_user(user_id)
        return derive_subscription_status(select_entitlement_record(records), self._now())

    async def check_access(self, user_id: str, resource_key: str) -> bool:
        derived = await self.get_status(user_id)
        return derived.status == SubscriptionState.ACTIVE and resource_key in derived.allowed_pages

    async def refresh_snapshot(self, user_id: str) -> Dict[str, Any]:
        """Rewrite ``user.subscription`` from derivation and return it."""
        derived = await self.get_status(user_id)
        snapshot = snapshot_from_status(derived)
        await self.users.set_subscription(user_id, snapshot, self._now())
        return snapshot

    async def invalidate_stale_snapshot(self, user_id: str) -> bool:
        """Reset a snapshot that still claims active. Cache maintenance only."""
        try:
            changed = await self.users.clear_active_subscription(user_id, self._now())
        except Exception as e:
            logger.error(f"Failed to correct subscription snapshot for {user_id}: {e}")
            return False
        if changed:
            logger.info("Stale subscription snapshot reset user_id=%s", user_id)
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_SNAPSHOT_CORRECTED,
                actor_role="system",
                user_id=user_id,
                resource_type="subscription",
                resource_id=user_id,
            )
        return changed

    async def get_payment_details(self, reference: str, requesting_user_id: str) -> Dict[str, Any]:
        record = await self.payments.find_by_reference(reference)
        if not record:
            raise PaymentNotFound(reference)
        if record["user_id"] != requesting_user_id:
            raise Unauthorized("You are not allowed to view this payment", reference=reference)
        return record

    # =========================================================================
    # Administrative override
    # =========================================================================

    async def admin_renew(
        self,
        user_id: str,
        plan: str,
        duration_override: Optional[timedelta] = None,
        actor_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """Grant a subscription without a provider payment. Always audited."""
        plan_def = get_plan(plan)
        user = await self.users.get(user_id)
        if not user:
            raise NotFound("User not found", user_id=user_id)

        now = self._now()
        start, end = compute_subscription_window(plan_def.name, now, duration_override)
        duration_days = (
            duration_override.total_seconds() / 86400 if duration_override is not None else None
        )
        record = PaymentRecord(
            user_id=user_id,
            reference=f"ADMIN-{uuid.uuid4().hex}",
            plan=plan_def.name,
            amount=0,
            status=PaymentStatus.SUCCESS,
            verified=True,
            verification_date=now,
            subscription_start=start,
            subscription_end=end,
            payment_provider=PaymentProvider.ADMIN,
            metadata={
                "source": PaymentSource.ADMIN.value,
                "actor_id": actor_id,
                "duration_days": duration_days,
            },
            verification_source=PaymentSource.ADMIN.value,
            created_at=now,
            updated_at=now,
        )
        await self.payments.insert(record.model_dump())

        before = user.get("subscription") or {}
        snapshot = await self.refresh_snapshot(user_id)

        logger.info(
            "ADMIN_SUBSCRIPTION_RENEWED user_id=%s reference=%s plan=%s end=%s actor_id=%s",
            user_id, record.reference, plan_def.name, end.isoformat(), actor_id,
        )
        await create_audit_log(
            action=AuditAction.ADMIN_SUBSCRIPTION_RENEWED,
            actor_role=UserRole.ROLE_ADMIN,
            actor_id=actor_id,
            user_id=user_id,
            resource_type="payment",
            resource_id=record.reference,
            before_state=before,
            after_state=snapshot,
            metadata={"plan": plan_def.name, "duration_days": duration_days},
        )
        return self._result(record.model_dump())


reconciliation_service = ReconciliationService()
