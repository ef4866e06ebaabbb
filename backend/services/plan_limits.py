"""Plan Limits - quota enforcement and feature flags per tenant account.

Every account is bound to a subscription plan (or, without one, to the trial
defaults). A plan caps how many records of each resource the account may own
and toggles optional features.

RULES:
1. A plan limit left empty falls back to the trial default for that resource
2. Creation is allowed while usage < limit (a limit of 0 blocks creation)
3. AI analyses are counted from the first day of the current month (UTC)
4. `all_features` on a plan grants every feature; otherwise a feature must be
   explicitly True
5. While limits are not loaded (no snapshot), creation and features are
   allowed and quotas read as 0
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import asyncio
import math
from pydantic import BaseModel, Field
from database import database
from models import (
    LimitAlert,
    LimitAlertLevel,
    PlanLimitValues,
    PlanUsage,
    ResourceType,
)
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# DEFAULTS
# ============================================================================
TRIAL_PLAN_NAME = "Trial"

DEFAULT_LIMITS = {
    "max_clients": 50,
    "max_users": 3,
    "max_events": 10,
    "max_products": 20,
    "max_forms": 5,
    "max_ai_analyses": 100,
    "max_storage_mb": 500,
}

RESOURCE_LIMIT_MAP = {
    ResourceType.CLIENTS: "max_clients",
    ResourceType.USERS: "max_users",
    ResourceType.EVENTS: "max_events",
    ResourceType.PRODUCTS: "max_products",
    ResourceType.FORMS: "max_forms",
    ResourceType.AI_ANALYSES: "max_ai_analyses",
}

# Collection counted for each resource
RESOURCE_COLLECTIONS = {
    ResourceType.CLIENTS: "clients",
    ResourceType.USERS: "users",
    ResourceType.EVENTS: "events",
    ResourceType.PRODUCTS: "products",
    ResourceType.FORMS: "forms",
    ResourceType.AI_ANALYSES: "ai_usage_logs",
}

RESOURCE_LABELS = {
    ResourceType.CLIENTS: ("client", "clients"),
    ResourceType.USERS: ("user", "users"),
    ResourceType.EVENTS: ("event", "events"),
    ResourceType.PRODUCTS: ("product", "products"),
    ResourceType.FORMS: ("form", "forms"),
    ResourceType.AI_ANALYSES: ("AI analysis", "AI analyses"),
}

NEAR_LIMIT_THRESHOLD = 80
UPGRADE_PATH = "/choose-plan"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def resolve_limits(plan: Optional[Dict[str, Any]]) -> PlanLimitValues:
    """Plan limits with per-field fallback to the trial defaults."""
    plan = plan or {}
    return PlanLimitValues(**{
        key: plan.get(key) if plan.get(key) is not None else default
        for key, default in DEFAULT_LIMITS.items()
    })


def features_grant(features: Dict[str, bool], feature: str) -> bool:
    if features.get("all_features"):
        return True
    return features.get(feature) is True


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ============================================================================
# SNAPSHOT
# ============================================================================
class PlanLimitsSnapshot(BaseModel):
    """Limits, usage and features of one account at a point in time."""
    account_id: str
    plan_id: Optional[str] = None
    plan_name: str = TRIAL_PLAN_NAME
    limits: PlanLimitValues
    usage: PlanUsage = Field(default_factory=PlanUsage)
    features: Dict[str, bool] = Field(default_factory=dict)

    def limit_for(self, resource: ResourceType) -> int:
        return getattr(self.limits, RESOURCE_LIMIT_MAP[ResourceType(resource)])

    def usage_for(self, resource: ResourceType) -> int:
        return getattr(self.usage, ResourceType(resource).value)

    def can_create(self, resource: ResourceType) -> bool:
        return self.usage_for(resource) < self.limit_for(resource)

    def remaining_quota(self, resource: ResourceType) -> int:
        return max(0, self.limit_for(resource) - self.usage_for(resource))

    def usage_percentage(self, resource: ResourceType) -> int:
        limit = self.limit_for(resource)
        if limit == 0:
            return 100
        return min(100, _round_half_up(self.usage_for(resource) / limit * 100))

    def is_near_limit(self, resource: ResourceType, threshold: int = NEAR_LIMIT_THRESHOLD) -> bool:
        return self.usage_percentage(resource) >= threshold

    def has_feature(self, feature: str) -> bool:
        return features_grant(self.features, feature)

    def limit_alert(self, resource: ResourceType) -> LimitAlert:
        resource = ResourceType(resource)
        usage = self.usage_for(resource)
        limit = self.limit_for(resource)
        remaining = self.remaining_quota(resource)
        _, plural = RESOURCE_LABELS[resource]

        if not self.can_create(resource):
            level = LimitAlertLevel.AT_LIMIT
            message = f"You have reached the limit of {usage} {plural} on your {self.plan_name} plan."
        elif self.is_near_limit(resource):
            level = LimitAlertLevel.NEAR_LIMIT
            message = f"You have used {usage} of {limit} {plural} ({remaining} remaining)."
        else:
            level = LimitAlertLevel.NONE
            message = None

        return LimitAlert(
            resource=resource,
            level=level,
            usage=usage,
            limit=limit,
            remaining=remaining,
            percentage=self.usage_percentage(resource),
            message=message,
        )

    def to_response(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["resources"] = {
            resource.value: {
                "usage": self.usage_for(resource),
                "limit": self.limit_for(resource),
                "remaining": self.remaining_quota(resource),
                "percentage": self.usage_percentage(resource),
                "can_create": self.can_create(resource),
                "is_near_limit": self.is_near_limit(resource),
            }
            for resource in ResourceType
        }
        return data


# Helpers tolerating a snapshot that has not been loaded yet
def can_create(snapshot: Optional[PlanLimitsSnapshot], resource: ResourceType) -> bool:
    return True if snapshot is None else snapshot.can_create(resource)


def remaining_quota(snapshot: Optional[PlanLimitsSnapshot], resource: ResourceType) -> int:
    return 0 if snapshot is None else snapshot.remaining_quota(resource)


def usage_percentage(snapshot: Optional[PlanLimitsSnapshot], resource: ResourceType) -> int:
    return 0 if snapshot is None else snapshot.usage_percentage(resource)


def has_feature(snapshot: Optional[PlanLimitsSnapshot], feature: str) -> bool:
    return True if snapshot is None else snapshot.has_feature(feature)


# ============================================================================
# DATABASE-BACKED OPERATIONS
# ============================================================================
async def count_usage(account_id: str, now: Optional[datetime] = None) -> PlanUsage:
    """Count current usage of every quota resource for an account."""
    db = database.get_db()
    base = {"account_id": account_id}
    ai_query = {**base, "created_at": {"$gte": month_start(now).isoformat()}}

    resources = list(RESOURCE_COLLECTIONS.items())
    counts = await asyncio.gather(*[
        db[collection].count_documents(ai_query if resource == ResourceType.AI_ANALYSES else base)
        for resource, collection in resources
    ])
    return PlanUsage(**{
        resource.value: count or 0
        for (resource, _), count in zip(resources, counts)
    })


async def get_plan_limits(
    account_id: str,
    now: Optional[datetime] = None,
) -> Optional[PlanLimitsSnapshot]:
    """Load limits, usage and features for an account. None if no account."""
    db = database.get_db()

    account = await db.accounts.find_one(
        {"account_id": account_id},
        {"_id": 0, "account_id": 1, "plan_id": 1, "subscription_status": 1}
    )
    if not account:
        return None

    plan_name = TRIAL_PLAN_NAME
    plan_doc = None
    features: Dict[str, bool] = {}

    if account.get("plan_id"):
        plan_doc = await db.subscription_plans.find_one(
            {"plan_id": account["plan_id"]},
            {"_id": 0}
        )
        if plan_doc:
            plan_name = plan_doc.get("name", plan_name)
            features = plan_doc.get("features") or {}
        else:
            logger.warning(f"Plan {account['plan_id']} not found for account {account_id}; using trial limits")

    usage = await count_usage(account_id, now)

    return PlanLimitsSnapshot(
        account_id=account_id,
        plan_id=account.get("plan_id"),
        plan_name=plan_name,
        limits=resolve_limits(plan_doc),
        usage=usage,
        features=features,
    )


async def enforce_quota(
    account_id: str,
    resource: ResourceType,
) -> Tuple[bool, Optional[str], Optional[Dict]]:
    """
    Server-side enforcement of a resource quota before creation.

    Returns:
        (is_allowed, error_message, error_details)
    """
    resource = ResourceType(resource)
    snapshot = await get_plan_limits(account_id)
    if snapshot is None:
        return False, "Account not found", {"error_code": "ACCOUNT_NOT_FOUND"}

    if snapshot.can_create(resource):
        return True, None, None

    alert = snapshot.limit_alert(resource)
    return False, alert.message, {
        "error_code": "PLAN_LIMIT_EXCEEDED",
        "resource": resource.value,
        "usage": alert.usage,
        "limit": alert.limit,
        "plan_id": snapshot.plan_id,
        "plan_name": snapshot.plan_name,
        "upgrade_required": True,
        "upgrade_path": UPGRADE_PATH,
    }


async def enforce_feature(
    account_id: str,
    feature: str,
) -> Tuple[bool, Optional[str], Optional[Dict]]:
    """
    Server-side enforcement of a plan feature flag.

    Returns:
        (is_allowed, error_message, error_details)
    """
    db = database.get_db()
    account = await db.accounts.find_one(
        {"account_id": account_id},
        {"_id": 0, "plan_id": 1}
    )
    if not account:
        return False, "Account not found", {"error_code": "ACCOUNT_NOT_FOUND"}

    plan_name = TRIAL_PLAN_NAME
    features: Dict[str, bool] = {}
    if account.get("plan_id"):
        plan_doc = await db.subscription_plans.find_one(
            {"plan_id": account["plan_id"]},
            {"_id": 0, "name": 1, "features": 1}
        )
        if plan_doc:
            plan_name = plan_doc.get("name", plan_name)
            features = plan_doc.get("features") or {}

    if features_grant(features, feature):
        return True, None, None

    return False, f"{feature} is not available on your {plan_name} plan", {
        "error_code": "FEATURE_NOT_IN_PLAN",
        "feature": feature,
        "plan_id": account.get("plan_id"),
        "plan_name": plan_name,
        "upgrade_required": True,
        "upgrade_path": UPGRADE_PATH,
    }
