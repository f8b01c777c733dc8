"""Subscription reporting for the admin dashboard.

Overview:
1. User totals and currently active subscriptions (derived, not from snapshots)
2. Revenue from verified provider payments (admin grants are free)
3. Plan distribution of active subscriptions
4. Most recent payment attempts
"""
from database import database
from models import PaymentProvider, PaymentStatus
from services.subscription_state import select_entitlement_record
from datetime import datetime, timezone
from typing import Dict, Any, List
import logging

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 10


class ReportingService:
    """Aggregate subscription and payment figures."""

    def _get_db(self):
        return database.get_db()

    async def get_subscription_overview(self) -> Dict[str, Any]:
        db = self._get_db()
        now = datetime.now(timezone.utc)

        total_users = await db.users.count_documents({})

        live_records = await db.payments.find(
            {"status": PaymentStatus.SUCCESS.value, "subscription_end": {"$gt": now}},
            {"_id": 0, "payment_response": 0},
        ).to_list(length=None)

        by_user: Dict[str, List[Dict[str, Any]]] = {}
        for record in live_records:
            by_user.setdefault(record["user_id"], []).append(record)

        plan_distribution: Dict[str, int] = {}
        for records in by_user.values():
            entitlement = select_entitlement_record(records)
            plan_distribution[entitlement["plan"]] = plan_distribution.get(entitlement["plan"], 0) + 1

        revenue_rows = await db.payments.aggregate([
            {"$match": {
                "status": PaymentStatus.SUCCESS.value,
                "payment_provider": PaymentProvider.PAYSTACK.value,
            }},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]).to_list(length=1)
        total_revenue = revenue_rows[0]["total"] if revenue_rows else 0

        recent = await db.payments.find(
            {}, {"_id": 0, "payment_response": 0}
        ).sort("created_at", -1).limit(RECENT_TRANSACTIONS).to_list(length=RECENT_TRANSACTIONS)

        return {
            "total_users": total_users,
            "active_subscriptions": len(by_user),
            "total_revenue": total_revenue,
            "average_revenue_per_user": round(total_revenue / total_users, 2) if total_users else 0,
            "plan_distribution": plan_distribution,
            "recent_transactions": recent,
            "generated_at": now,
        }


reporting_service = ReportingService()
