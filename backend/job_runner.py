"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and scripts (manual run).
Each run_* returns a dict with "message" (and optionally "count").
"""
import logging
from datetime import date
from typing import Optional

logger = logging.getLogger(__name__)


async def run_financial_status_refresh(today: Optional[date] = None):
    try:
        from services.financial_status import refresh_cached_financial_statuses
        count = await refresh_cached_financial_statuses(today=today)
        logger.info(f"Financial status refresh completed: {count} clients changed")
        return {"message": f"Financial statuses refreshed: {count} changed", "count": count}
    except Exception as e:
        logger.error(f"Financial status refresh failed: {e}")
        raise


async def run_contract_expiry_check(today: Optional[date] = None):
    try:
        from services.contract_status import notify_expiring_contracts
        result = await notify_expiring_contracts(today=today)
        count = result["notifications_created"]
        logger.info(f"Contract expiry check completed: {count} notifications")
        return {"message": f"Contract expiry notices created: {count}", "count": count}
    except Exception as e:
        logger.error(f"Contract expiry check failed: {e}")
        raise
