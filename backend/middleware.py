from fastapi import Request, HTTPException, status
from functools import wraps
from typing import Optional
import logging
from auth import decode_access_token, check_rbac
from models import AuditAction, ResourceType, UserRole
from services.plan_limits import enforce_feature, enforce_quota
from services.subscription_access import get_account_access
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload:
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    request.state.user = user
    return user

async def require_admin(request: Request) -> dict:
    """Require platform admin (or owner) role."""
    user = await require_auth(request)
    if not check_rbac(user.get("role"), UserRole.ROLE_ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def account_route_guard(request: Request) -> dict:
    """Guard for tenant routes - checks auth and locks accounts whose trial has expired.

    Only an expired trial without access is locked; a running trial without a
    payment method and non-trial statuses pass.
    """
    user = await require_auth(request)

    if not user.get("account_id"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not linked to an account"
        )

    # Only OWNER bypasses billing gating
    if user.get("role") == UserRole.ROLE_OWNER.value:
        return user

    access = await get_account_access(user["account_id"])
    if access.is_trial_expired and not access.has_access:
        await create_audit_log(
            action=AuditAction.ACCESS_DENIED,
            actor_id=user.get("user_id"),
            account_id=user["account_id"],
            metadata={
                "path": str(request.url.path),
                "subscription_status": access.subscription_status,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error_code": "TRIAL_EXPIRED",
                "message": "Your trial has ended. Choose a plan to continue.",
                "subscription_status": access.subscription_status,
            },
            headers={"X-Redirect": "/choose-plan"}
        )

    return user


def require_feature(feature_key: str):
    """
    Decorator to enforce plan feature flags.

    Usage:
        @router.get("/endpoint")
        @require_feature("reports")
        async def my_endpoint(request: Request):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(request: Request, *args, **kwargs):
            user = await account_route_guard(request)
            if user.get("role") == UserRole.ROLE_OWNER.value:
                return await func(request, *args, **kwargs)

            allowed, message, details = await enforce_feature(user["account_id"], feature_key)
            if not allowed:
                await create_audit_log(
                    action=AuditAction.FEATURE_DENIED,
                    actor_id=user.get("user_id"),
                    account_id=user["account_id"],
                    metadata={**(details or {}), "endpoint": str(request.url.path), "method": request.method}
                )
                logger.warning(
                    "Feature access denied: account_id=%s feature=%s endpoint=%s",
                    user["account_id"], feature_key, request.url.path
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"message": message, **(details or {})}
                )

            return await func(request, *args, **kwargs)

        return wrapper
    return decorator


def require_quota(resource: ResourceType):
    """
    Decorator to enforce plan quotas before a resource is created.

    Usage:
        @router.post("/clients")
        @require_quota(ResourceType.CLIENTS)
        async def create_client(request: Request, ...):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(request: Request, *args, **kwargs):
            user = await account_route_guard(request)

            allowed, message, details = await enforce_quota(user["account_id"], resource)
            if not allowed:
                await create_audit_log(
                    action=AuditAction.PLAN_LIMIT_DENIED,
                    actor_id=user.get("user_id"),
                    account_id=user["account_id"],
                    metadata={**(details or {}), "endpoint": str(request.url.path), "method": request.method}
                )
                logger.warning(
                    "Plan limit reached: account_id=%s resource=%s endpoint=%s",
                    user["account_id"], ResourceType(resource).value, request.url.path
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"message": message, **(details or {})}
                )

            return await func(request, *args, **kwargs)

        return wrapper
    return decorator
