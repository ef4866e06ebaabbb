from fastapi import APIRouter, HTTPException, Request, status
from typing import Optional
from models import ResourceType, StartTrialRequest
from middleware import account_route_guard, require_admin, require_auth
from services.plan_limits import get_plan_limits, enforce_feature
from services.subscription_access import (
    get_account_access,
    get_account_plan_badge,
    start_trial,
    TrialNotAvailableError,
)
from utils.audit import get_account_audit_logs
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/account", tags=["account"])


@router.get("/subscription-status")
async def get_subscription_status(request: Request):
    """Trial/subscription access for the current account.

    Not guarded by account_route_guard: locked accounts need this to render
    the choose-plan screen.
    """
    user = await require_auth(request)
    access = await get_account_access(user.get("account_id"))
    return access.model_dump(mode="json")


@router.get("/plan-badge")
async def get_plan_badge(request: Request):
    """Plan name and trial countdown for navigation chrome."""
    user = await require_auth(request)
    badge = await get_account_plan_badge(user.get("account_id"))
    if badge is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return badge.model_dump(mode="json")


@router.post("/start-trial")
async def post_start_trial(request: Request, body: StartTrialRequest):
    """Start the account's one trial (admins only; 409 when not available)."""
    user = await require_admin(request)
    if not user.get("account_id"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is not linked to an account")

    try:
        result = await start_trial(
            account_id=user["account_id"],
            plan_id=body.plan_id,
            actor_id=user.get("user_id"),
        )
    except TrialNotAvailableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error_code": e.error_code, "message": str(e)}
        )
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return result


@router.get("/plan-limits")
async def get_account_plan_limits(request: Request):
    """Limits, usage and features of the current plan."""
    user = await account_route_guard(request)

    snapshot = await get_plan_limits(user["account_id"])
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return snapshot.to_response()


@router.get("/plan-limits/{resource}")
async def get_resource_limit(request: Request, resource: ResourceType):
    """Quota check + alert for a single resource (used before create dialogs)."""
    user = await account_route_guard(request)

    snapshot = await get_plan_limits(user["account_id"])
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

    alert = snapshot.limit_alert(resource)
    return {
        **alert.model_dump(mode="json"),
        "can_create": snapshot.can_create(resource),
        "plan_name": snapshot.plan_name,
    }


@router.get("/features/{feature}")
async def get_feature_access(request: Request, feature: str):
    user = await account_route_guard(request)

    allowed, message, details = await enforce_feature(user["account_id"], feature)
    return {
        "feature": feature,
        "enabled": allowed,
        "message": message,
        "details": details,
    }


@router.get("/audit-history")
async def get_audit_history(request: Request, resource_type: Optional[str] = None, limit: int = 50):
    """Billing and access history of the current account (admins only)."""
    user = await require_admin(request)
    if not user.get("account_id"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is not linked to an account")

    history = await get_account_audit_logs(user["account_id"], resource_type, min(max(limit, 1), 200))
    return {"account_id": user["account_id"], "history": history}
