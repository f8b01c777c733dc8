"""Canonical Plan Catalog - single source of truth for subscription plans.

Amounts are in naira (display units). The payment provider is charged in
kobo, see ``Plan.amount_minor``. Allowed pages accumulate up the tiers.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Tuple

from services.errors import InvalidPlan


@dataclass(frozen=True)
class Plan:
    name: str
    amount: int
    duration: timedelta
    allowed_pages: Tuple[str, ...]

    @property
    def amount_minor(self) -> int:
        return self.amount * 100

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "amount": self.amount,
            "duration_seconds": int(self.duration.total_seconds()),
            "allowed_pages": list(self.allowed_pages),
        }


# ============================================================================
# PLAN DEFINITIONS
# ============================================================================
_BASIC_PAGES = ("std.html", "p_c.html")
_STANDARD_PAGES = _BASIC_PAGES + ("therapist_alice.html",)
_PREMIUM_PAGES = _STANDARD_PAGES + ("doc_John.html", "ai_doc_dashboard.html", "health_reports.html")
_PRO_PAGES = _PREMIUM_PAGES + ("emergency_support.html",)

PLANS: Dict[str, Plan] = {
    "basic": Plan("basic", 50, timedelta(hours=1), _BASIC_PAGES),
    "standard": Plan("standard", 450, timedelta(days=7), _STANDARD_PAGES),
    "premium": Plan("premium", 850, timedelta(days=14), _PREMIUM_PAGES),
    "pro": Plan("pro", 1600, timedelta(days=30), _PRO_PAGES),
}


def get_plan(plan_id: str) -> Plan:
    """Resolve a plan id (case-insensitive). Raises InvalidPlan."""
    plan = PLANS.get((plan_id or "").strip().lower())
    if plan is None:
        raise InvalidPlan(plan_id)
    return plan


def list_plans() -> List[Plan]:
    return list(PLANS.values())


def allowed_pages(plan_id: str) -> List[str]:
    """Pages the plan entitles; unknown plans entitle nothing."""
    plan = PLANS.get((plan_id or "").strip().lower())
    return list(plan.allowed_pages) if plan else []
