"""Subscription Access - trial and subscription gating for tenant accounts.

Access rules:
1. Accounts whose subscription_status is active, paid, trialing or pending have access
2. Accounts on "trial" have access only while the trial has not ended AND a
   payment method (card or PIX) is configured
3. Everything else (expired trial, overdue, cancelled, unknown) is locked
4. Missing account -> locked; lookup failure -> access granted (fail open)
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union
import math
import os
from database import database
from models import (
    AccountSubscriptionStatus,
    AuditAction,
    PlanBadge,
    SubscriptionAccess,
)
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({
    AccountSubscriptionStatus.ACTIVE.value,
    AccountSubscriptionStatus.PAID.value,
    AccountSubscriptionStatus.TRIALING.value,
    AccountSubscriptionStatus.PENDING.value,
})

# Statuses shown as a fully active plan in the sidebar badge
ACTIVE_BADGE_STATUSES = frozenset({
    AccountSubscriptionStatus.ACTIVE.value,
    AccountSubscriptionStatus.PAID.value,
})

EXPIRING_WITHIN_DAYS = 3
DEFAULT_TRIAL_DAYS = int(os.getenv("DEFAULT_TRIAL_DAYS", "7"))

SECONDS_PER_DAY = 60 * 60 * 24


class TrialNotAvailableError(ValueError):
    """Raised when an account may not (re)start a trial."""
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        super().__init__(message)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def evaluate_access(account: Dict[str, Any], now: Optional[datetime] = None) -> SubscriptionAccess:
    """Decide whether an account may use the product right now."""
    now = now or datetime.now(timezone.utc)
    subscription_status = account.get("subscription_status")
    payment_method_configured = bool(account.get("payment_method_configured"))

    trial_ends_at = parse_datetime(account.get("trial_ends_at"))
    trial_elapsed = now > trial_ends_at if trial_ends_at else False

    days_remaining = None
    if trial_ends_at and not trial_elapsed:
        days_remaining = math.ceil((trial_ends_at - now).total_seconds() / SECONDS_PER_DAY)

    is_trial = subscription_status == AccountSubscriptionStatus.TRIAL.value
    has_paid_status = (subscription_status or "") in PAID_STATUSES
    trial_with_payment = is_trial and not trial_elapsed and payment_method_configured

    return SubscriptionAccess(
        has_access=has_paid_status or trial_with_payment,
        is_trial_expired=is_trial and trial_elapsed,
        trial_ends_at=trial_ends_at,
        subscription_status=subscription_status,
        days_remaining=days_remaining,
        payment_method_configured=payment_method_configured,
    )


async def get_account_access(account_id: Optional[str]) -> SubscriptionAccess:
    """Access decision for an account loaded fresh from the database."""
    if not account_id:
        return SubscriptionAccess(has_access=False)

    try:
        db = database.get_db()
        account = await db.accounts.find_one(
            {"account_id": account_id},
            {"_id": 0, "subscription_status": 1, "trial_ends_at": 1,
             "plan_id": 1, "payment_method_configured": 1}
        )
    except Exception as e:
        logger.error(f"Error checking subscription for account {account_id}: {e}")
        return SubscriptionAccess(has_access=True)

    if not account:
        return SubscriptionAccess(has_access=False)

    return evaluate_access(account)


def get_plan_badge(
    account: Dict[str, Any],
    plan_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PlanBadge:
    """Compact plan info (plan name, trial countdown) for navigation chrome."""
    now = now or datetime.now(timezone.utc)
    subscription_status = account.get("subscription_status")
    trial_ends_at = parse_datetime(account.get("trial_ends_at"))
    is_trialing = subscription_status == AccountSubscriptionStatus.TRIAL.value

    days_remaining = None
    if trial_ends_at and is_trialing:
        days_remaining = max(0, math.ceil((trial_ends_at - now).total_seconds() / SECONDS_PER_DAY))

    return PlanBadge(
        plan_name=plan_name,
        subscription_status=subscription_status,
        trial_ends_at=trial_ends_at,
        days_remaining=days_remaining,
        is_trialing=is_trialing,
        is_active=(subscription_status or "") in ACTIVE_BADGE_STATUSES,
        is_expiring=is_trialing and days_remaining is not None and days_remaining <= EXPIRING_WITHIN_DAYS,
    )


async def get_account_plan_badge(account_id: str) -> Optional[PlanBadge]:
    db = database.get_db()
    account = await db.accounts.find_one(
        {"account_id": account_id},
        {"_id": 0, "subscription_status": 1, "trial_ends_at": 1, "plan_id": 1}
    )
    if not account:
        return None

    plan_name = None
    if account.get("plan_id"):
        plan = await db.subscription_plans.find_one(
            {"plan_id": account["plan_id"]},
            {"_id": 0, "name": 1}
        )
        plan_name = plan.get("name") if plan else None

    return get_plan_badge(account, plan_name)


async def start_trial(
    account_id: str,
    plan_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Put an account on trial for the plan's trial length.

    An account gets one trial: paying accounts and accounts that already had
    a trial (trial_ends_at set) raise TrialNotAvailableError.

    Returns the applied changes, or None when the account does not exist.
    """
    now = now or datetime.now(timezone.utc)
    db = database.get_db()

    account = await db.accounts.find_one(
        {"account_id": account_id},
        {"_id": 0, "subscription_status": 1, "trial_ends_at": 1, "plan_id": 1}
    )
    if not account:
        return None

    if (account.get("subscription_status") or "") in PAID_STATUSES:
        raise TrialNotAvailableError(
            "SUBSCRIPTION_ALREADY_ACTIVE",
            "Account already has an active subscription",
        )
    if account.get("trial_ends_at"):
        raise TrialNotAvailableError(
            "TRIAL_ALREADY_USED",
            "The trial for this account has already been used",
        )

    trial_days = DEFAULT_TRIAL_DAYS
    if plan_id:
        plan = await db.subscription_plans.find_one(
            {"plan_id": plan_id},
            {"_id": 0, "trial_days": 1}
        )
        if plan and plan.get("trial_days") is not None:
            trial_days = plan["trial_days"]

    changes = {
        "subscription_status": AccountSubscriptionStatus.TRIAL.value,
        "plan_id": plan_id,
        "trial_ends_at": (now + timedelta(days=trial_days)).isoformat(),
        "updated_at": now.isoformat(),
    }
    await db.accounts.update_one({"account_id": account_id}, {"$set": changes})

    await create_audit_log(
        action=AuditAction.TRIAL_STARTED,
        actor_id=actor_id,
        account_id=account_id,
        resource_type="account",
        resource_id=account_id,
        before_state={k: account.get(k) for k in ("subscription_status", "trial_ends_at", "plan_id")},
        after_state={k: changes[k] for k in ("subscription_status", "trial_ends_at", "plan_id")},
        metadata={"trial_days": trial_days},
    )
    logger.info(f"Trial started: account_id={account_id} plan_id={plan_id} trial_days={trial_days}")
    return {**changes, "trial_days": trial_days}
