"""Plan catalogue routes.

GET  /api/plans                         - public list of active plans
GET  /api/admin/plans                   - all plans (incl. inactive)
POST /api/admin/plans                   - create plan
PUT  /api/admin/plans/{plan_id}         - partial update
DELETE /api/admin/plans/{plan_id}       - deactivate (soft delete)
GET  /api/admin/plans/{plan_id}/history - audit trail
"""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import require_admin
from models import SubscriptionPlan, SubscriptionPlanUpdate
from services.plan_registry import plan_registry, PlanAlreadyExistsError, UnknownFeatureError
from utils.audit import get_audit_logs_for_resource
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/plans", tags=["plans"])
admin_router = APIRouter(prefix="/api/admin/plans", tags=["admin-plans"])


@router.get("")
async def list_public_plans():
    plans = await plan_registry.list_plans()
    return {"plans": plans, "features": plan_registry.get_feature_catalog()}


@admin_router.get("")
async def list_all_plans(request: Request):
    await require_admin(request)
    return {"plans": await plan_registry.list_plans(include_inactive=True)}


@admin_router.post("", status_code=status.HTTP_201_CREATED)
async def create_plan(request: Request, body: SubscriptionPlan):
    user = await require_admin(request)
    try:
        return await plan_registry.create_plan(body, actor_id=user.get("user_id"))
    except UnknownFeatureError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PlanAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@admin_router.put("/{plan_id}")
async def update_plan(request: Request, plan_id: str, body: SubscriptionPlanUpdate):
    user = await require_admin(request)
    try:
        plan = await plan_registry.update_plan(plan_id, body, actor_id=user.get("user_id"))
    except UnknownFeatureError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return plan


@admin_router.delete("/{plan_id}")
async def deactivate_plan(request: Request, plan_id: str):
    user = await require_admin(request)
    if not await plan_registry.deactivate_plan(plan_id, actor_id=user.get("user_id")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return {"plan_id": plan_id, "is_active": False}


@admin_router.get("/{plan_id}/history")
async def plan_history(request: Request, plan_id: str, limit: int = 50):
    await require_admin(request)
    return {"plan_id": plan_id, "history": await get_audit_logs_for_resource("plan", plan_id, limit)}
