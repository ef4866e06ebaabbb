"""Webhook Routes - payment provider events.

POST /api/webhooks/asaas - Asaas payment events; validated by the
asaas-access-token header when ASAAS_WEBHOOK_TOKEN is set.
"""
from fastapi import APIRouter, HTTPException, Request, Header, status
from services.asaas_webhook_service import asaas_webhook_service, webhook_token_ok
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/asaas")
async def asaas_webhook(
    request: Request,
    asaas_access_token: str = Header(None, alias="asaas-access-token"),
):
    """Handle Asaas payment webhooks.

    Processing failures answer 400 so Asaas retries the delivery; duplicate
    deliveries are acknowledged without side effects.
    """
    if not webhook_token_ok(asaas_access_token):
        logger.warning("Asaas webhook rejected: missing or invalid asaas-access-token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    logger.info(f"Asaas webhook received: event={payload.get('event')}")
    success, message, details = await asaas_webhook_service.process_webhook(payload)

    if not success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": message, **(details or {})}
        )
    return {"received": True, "message": message, "details": details}
