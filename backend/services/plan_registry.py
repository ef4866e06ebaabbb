"""Plan Registry - admin-managed catalogue of subscription plans.

Plans live in the `subscription_plans` collection so the platform owner can
change pricing, trial length, quotas and feature flags without a deploy.

RULES:
1. Only active plans are offered publicly (sorted by price)
2. Plans are never hard-deleted; deactivation keeps existing accounts working
3. Feature flags are restricted to the keys in FEATURE_METADATA
4. Every catalogue change is audit logged with a before/after diff
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from database import database
from models import AuditAction, SubscriptionPlan, SubscriptionPlanUpdate
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# FEATURE METADATA - Known plan feature flags
# ============================================================================
FEATURE_METADATA = {
    "all_features": {
        "name": "All Features",
        "description": "Unlocks every current and future feature",
    },
    "ai_analysis": {
        "name": "AI Analysis",
        "description": "AI summaries of client conversations and meetings",
    },
    "custom_fields": {
        "name": "Custom Fields",
        "description": "Custom fields on client records",
    },
    "events": {
        "name": "Events",
        "description": "Create events and track attendance",
    },
    "forms": {
        "name": "Forms",
        "description": "Public forms linked to client records",
    },
    "live_tracking": {
        "name": "Live Tracking",
        "description": "Live participation tracking for meetings",
    },
    "reports": {
        "name": "Reports",
        "description": "Financial and engagement reports",
    },
    "whatsapp_integration": {
        "name": "WhatsApp Integration",
        "description": "WhatsApp conversations and support inbox",
    },
}


class UnknownFeatureError(ValueError):
    """Raised when a plan references a feature flag that does not exist."""
    def __init__(self, features: List[str]):
        self.features = features
        super().__init__(f"Unknown plan features: {', '.join(sorted(features))}")


class PlanAlreadyExistsError(ValueError):
    """Raised when a plan_id is already in the catalogue."""
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan {plan_id} already exists")


def validate_features(features: Optional[Dict[str, bool]]) -> None:
    unknown = [key for key in (features or {}) if key not in FEATURE_METADATA]
    if unknown:
        raise UnknownFeatureError(unknown)


# ============================================================================
# PLAN REGISTRY SERVICE
# ============================================================================
class PlanRegistryService:
    """Central service for the subscription plan catalogue."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_plans(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        """Plans sorted by price; only active ones unless asked otherwise."""
        db = database.get_db()
        query = {} if include_inactive else {"is_active": True}
        return await db.subscription_plans.find(query, {"_id": 0}).sort("price", 1).to_list(100)

    async def get_plan(self, plan_id: str) -> Optional[Dict[str, Any]]:
        db = database.get_db()
        return await db.subscription_plans.find_one({"plan_id": plan_id}, {"_id": 0})

    def get_feature_catalog(self) -> List[Dict[str, Any]]:
        return [{"key": key, **meta} for key, meta in FEATURE_METADATA.items()]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_plan(self, plan: SubscriptionPlan, actor_id: Optional[str] = None) -> Dict[str, Any]:
        validate_features(plan.features)
        db = database.get_db()

        doc = plan.model_dump(mode="json")
        try:
            await db.subscription_plans.insert_one(doc)
        except Exception as insert_err:
            if "duplicate key" in str(insert_err).lower() or "E11000" in str(insert_err):
                raise PlanAlreadyExistsError(plan.plan_id)
            raise
        doc.pop("_id", None)

        await create_audit_log(
            action=AuditAction.PLAN_CREATED,
            actor_id=actor_id,
            resource_type="plan",
            resource_id=plan.plan_id,
            after_state=doc,
        )
        logger.info(f"Plan created: plan_id={plan.plan_id} name={plan.name}")
        return doc

    async def update_plan(
        self,
        plan_id: str,
        update: SubscriptionPlanUpdate,
        actor_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Apply a partial update. Returns the updated plan, or None if missing."""
        changes = update.model_dump(mode="json", exclude_unset=True)
        validate_features(changes.get("features"))

        before = await self.get_plan(plan_id)
        if not before:
            return None

        if not changes:
            return before

        changes["updated_at"] = datetime.now(timezone.utc).isoformat()
        db = database.get_db()
        await db.subscription_plans.update_one({"plan_id": plan_id}, {"$set": changes})
        after = {**before, **changes}

        await create_audit_log(
            action=AuditAction.PLAN_UPDATED,
            actor_id=actor_id,
            resource_type="plan",
            resource_id=plan_id,
            before_state=before,
            after_state=after,
        )
        return after

    async def deactivate_plan(self, plan_id: str, actor_id: Optional[str] = None) -> bool:
        db = database.get_db()
        result = await db.subscription_plans.update_one(
            {"plan_id": plan_id},
            {"$set": {"is_active": False, "updated_at": datetime.now(timezone.utc).isoformat()}}
        )
        if not result.matched_count:
            return False

        await create_audit_log(
            action=AuditAction.PLAN_DEACTIVATED,
            actor_id=actor_id,
            resource_type="plan",
            resource_id=plan_id,
        )
        logger.info(f"Plan deactivated: plan_id={plan_id}")
        return True


# Singleton instance
plan_registry = PlanRegistryService()
