"""Subscription state derivation.

Pure functions over payment records. The user's ``subscription`` snapshot is
never consulted here; authorization decisions always go through
``select_entitlement_record`` + ``derive_subscription_status``.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from models import PaymentStatus, SubscriptionState, SubscriptionStatus, TimeRemaining
from services.plan_catalog import allowed_pages, get_plan

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """Normalize stored datetimes (aware, naive or ISO string) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_subscription_window(
    plan: str,
    now: datetime,
    duration_override: Optional[timedelta] = None,
) -> Tuple[datetime, datetime]:
    """Return ``(start, end)`` for a purchase of ``plan`` activated at ``now``."""
    duration = duration_override if duration_override is not None else get_plan(plan).duration
    start = as_utc(now)
    return start, start + duration


def select_entitlement_record(records: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the success record with the latest ``subscription_end``.

    Ties go to the most recent ``verification_date``, then the greatest
    ``reference``.
    """
    candidates = [
        r for r in records
        if r.get("status") == PaymentStatus.SUCCESS.value and r.get("subscription_end") is not None
    ]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda r: (
            as_utc(r["subscription_end"]),
            as_utc(r.get("verification_date")) or _EPOCH,
            r.get("reference") or "",
        ),
    )


def time_remaining(end: datetime, now: datetime) -> TimeRemaining:
    seconds = max(0, int((as_utc(end) - as_utc(now)).total_seconds()))
    return TimeRemaining(
        days=seconds // 86400,
        hours=(seconds % 86400) // 3600,
        minutes=(seconds % 3600) // 60,
    )


def derive_subscription_status(record: Optional[Dict[str, Any]], now: datetime) -> SubscriptionStatus:
    if record is None:
        return SubscriptionStatus(status=SubscriptionState.INACTIVE, plan="none")

    start = as_utc(record.get("subscription_start"))
    end = as_utc(record["subscription_end"])
    if end <= as_utc(now):
        return SubscriptionStatus(
            status=SubscriptionState.EXPIRED,
            plan=record["plan"],
            subscription_start=start,
            subscription_end=end,
            allowed_pages=[],
            reference=record.get("reference"),
        )

    return SubscriptionStatus(
        status=SubscriptionState.ACTIVE,
        plan=record["plan"],
        subscription_start=start,
        subscription_end=end,
        allowed_pages=allowed_pages(record["plan"]),
        time_remaining=time_remaining(end, now),
        reference=record.get("reference"),
    )


def snapshot_from_status(derived: SubscriptionStatus) -> Dict[str, Any]:
    """Build the denormalized ``user.subscription`` document for a derived status."""
    if derived.status == SubscriptionState.INACTIVE:
        return {"plan": "none", "start_date": None, "end_date": None,
                "status": SubscriptionState.INACTIVE.value, "reference": None}
    return {
        "plan": derived.plan,
        "start_date": derived.subscription_start,
        "end_date": derived.subscription_end,
        "status": derived.status.value,
        "reference": derived.reference,
    }
