"""
Shared job runner for scheduled background jobs.
Used by the server scheduler and by scripts/.
Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_pending_payment_expiry():
    """Fail pending payments older than the grace window, for every user."""
    try:
        from services.reconciliation_service import reconciliation_service
        count = await reconciliation_service.expire_stale_pending()
        logger.info(f"Pending payment expiry job completed: {count} payments expired")
        return {"message": f"Pending payments expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Pending payment expiry job failed: {e}")
        raise


async def run_subscription_snapshot_regeneration(service=None):
    """Rewrite every paying user's subscription snapshot from payment history."""
    try:
        if service is None:
            from services.reconciliation_service import reconciliation_service as service
        user_ids = await service.payments.distinct_users_with_success()
        count = 0
        for user_id in user_ids:
            try:
                await service.refresh_snapshot(user_id)
                count += 1
            except Exception as e:
                logger.error(f"Snapshot regeneration failed for {user_id}: {e}")
        logger.info(f"Snapshot regeneration job completed: {count}/{len(user_ids)} users refreshed")
        return {"message": f"Subscription snapshots refreshed: {count}", "count": count}
    except Exception as e:
        logger.error(f"Snapshot regeneration job failed: {e}")
        raise
