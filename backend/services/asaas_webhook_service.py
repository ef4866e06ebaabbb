"""Asaas Webhook Service - payment events for client subscriptions and contracts.

Key Principles:
1. Idempotency: every event is processed once (asaas_events collection)
2. Shared token: when ASAAS_WEBHOOK_TOKEN is set, the asaas-access-token header must match
3. Payment status is mapped onto our own payment vocabulary before any write
4. Audit logging: every applied transition is logged

Payment routing (by payment.externalReference):
- with payment.subscription: externalReference is our client subscription id
- "contract_<id>": payment for a client contract
"""
import calendar
import os
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple
from database import database
from models import AuditAction, BillingPeriod, PaymentStatus
from services.contract_status import contract_status_from_payment
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

CONTRACT_REFERENCE_PREFIX = "contract_"

PAYMENT_STATUS_MAP = {
    "PENDING": PaymentStatus.PENDING,
    "RECEIVED": PaymentStatus.ACTIVE,
    "CONFIRMED": PaymentStatus.ACTIVE,
    "OVERDUE": PaymentStatus.OVERDUE,
    "REFUNDED": PaymentStatus.CANCELLED,
    "RECEIVED_IN_CASH": PaymentStatus.ACTIVE,
    "REFUND_REQUESTED": PaymentStatus.CANCELLED,
    "CHARGEBACK_REQUESTED": PaymentStatus.CANCELLED,
    "CHARGEBACK_DISPUTE": PaymentStatus.CANCELLED,
    "AWAITING_CHARGEBACK_REVERSAL": PaymentStatus.CANCELLED,
    "DUNNING_REQUESTED": PaymentStatus.OVERDUE,
    "DUNNING_RECEIVED": PaymentStatus.ACTIVE,
    "AWAITING_RISK_ANALYSIS": PaymentStatus.PENDING,
}

BILLING_PERIOD_MONTHS = {
    BillingPeriod.MONTHLY.value: 1,
    BillingPeriod.QUARTERLY.value: 3,
    BillingPeriod.SEMIANNUAL.value: 6,
    BillingPeriod.ANNUAL.value: 12,
}


def map_payment_status(asaas_status: Optional[str]) -> PaymentStatus:
    return PAYMENT_STATUS_MAP.get(asaas_status or "", PaymentStatus.PENDING)


def add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the month's end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_billing_date(payment_date: str, billing_period: Optional[str]) -> Optional[date]:
    """Next billing date after a payment, or None for an unknown period."""
    months = BILLING_PERIOD_MONTHS.get(billing_period or "")
    if not months:
        return None
    return add_months(date.fromisoformat(payment_date[:10]), months)


def webhook_token_ok(header_token: Optional[str]) -> bool:
    """True when no token is configured or the header matches it."""
    configured = (os.getenv("ASAAS_WEBHOOK_TOKEN") or "").strip()
    if not configured:
        return True
    return bool(header_token and header_token.strip() == configured)


def _event_id(payload: Dict[str, Any]) -> str:
    if payload.get("id"):
        return str(payload["id"])
    payment = payload.get("payment") or {}
    return f"{payload.get('event')}:{payment.get('id')}:{payment.get('status')}"


class AsaasWebhookService:
    """Applies Asaas payment events to client subscriptions and contracts."""

    async def process_webhook(self, payload: Dict[str, Any]) -> Tuple[bool, str, Optional[Dict]]:
        """
        Main webhook entry point.

        Returns:
            (success, message, details)
        """
        event_type = payload.get("event")
        payment = payload.get("payment")
        if not payment or not isinstance(payment, dict):
            logger.info(f"Asaas webhook without payment data: event={event_type}")
            return True, "No payment data", None

        event_id = _event_id(payload)
        db = database.get_db()

        existing = await db.asaas_events.find_one({"event_id": event_id}, {"_id": 0, "status": 1})
        if existing and existing.get("status") == "PROCESSED":
            logger.info(f"Asaas event {event_id} already processed - skipping")
            return True, "Already processed", {"event_id": event_id}

        event_record = {
            "event_id": event_id,
            "type": event_type,
            "payment_id": payment.get("id"),
            "created": datetime.now(timezone.utc).isoformat(),
            "status": "PROCESSING",
            "error": None,
        }
        if existing:
            await db.asaas_events.update_one({"event_id": event_id}, {"$set": event_record})
        else:
            try:
                await db.asaas_events.insert_one(event_record)
            except Exception as insert_err:
                if "duplicate key" in str(insert_err).lower() or "E11000" in str(insert_err):
                    logger.info(f"Asaas event {event_id} duplicate insert (race) - skipping")
                    return True, "Already processed", {"event_id": event_id}
                raise

        try:
            result = await self.apply_payment(payment)
        except Exception as e:
            logger.error(f"ASAAS_WEBHOOK_FAILED event_id={event_id} event_type={event_type} error={e}")
            await db.asaas_events.update_one(
                {"event_id": event_id},
                {"$set": {"status": "FAILED", "error": str(e)}}
            )
            return False, "Processing failed", {"event_id": event_id, "error": str(e)}

        await db.asaas_events.update_one(
            {"event_id": event_id},
            {"$set": {"status": "PROCESSED", "processed_at": datetime.now(timezone.utc).isoformat()}}
        )
        await create_audit_log(
            action=AuditAction.PAYMENT_WEBHOOK_RECEIVED,
            resource_type="asaas_event",
            resource_id=event_id,
            metadata={"event_type": event_type, **result},
        )
        return True, "Processed", {"event_id": event_id, **result}

    async def apply_payment(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        external_reference = payment.get("externalReference")
        subscription_ref = payment.get("subscription")
        mapped = map_payment_status(payment.get("status"))

        logger.info(
            "Asaas payment: external_ref=%s subscription=%s status=%s -> %s",
            external_reference, subscription_ref, payment.get("status"), mapped.value,
        )

        result: Dict[str, Any] = {
            "payment_status": mapped.value,
            "subscription_updated": False,
            "contract_updated": False,
        }

        if subscription_ref and external_reference:
            result["subscription_updated"] = await self._update_subscription(
                external_reference, mapped, payment.get("paymentDate")
            )

        if external_reference and external_reference.startswith(CONTRACT_REFERENCE_PREFIX):
            contract_id = external_reference[len(CONTRACT_REFERENCE_PREFIX):]
            result["contract_updated"] = await self._update_contract(contract_id, mapped)

        return result

    async def _update_subscription(
        self,
        subscription_id: str,
        mapped: PaymentStatus,
        payment_date: Optional[str],
    ) -> bool:
        db = database.get_db()
        subscription = await db.client_subscriptions.find_one(
            {"subscription_id": subscription_id},
            {"_id": 0}
        )
        if not subscription:
            logger.info(f"Asaas webhook: subscription {subscription_id} not found")
            return False

        update = {
            "payment_status": mapped.value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if mapped == PaymentStatus.ACTIVE and payment_date:
            next_date = next_billing_date(payment_date, subscription.get("billing_period"))
            if next_date:
                update["next_billing_date"] = next_date.isoformat()

        await db.client_subscriptions.update_one(
            {"subscription_id": subscription_id},
            {"$set": update}
        )
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_PAYMENT_UPDATED,
            account_id=subscription.get("account_id"),
            resource_type="client_subscription",
            resource_id=subscription_id,
            before_state={"payment_status": subscription.get("payment_status"),
                          "next_billing_date": subscription.get("next_billing_date")},
            after_state={"payment_status": update["payment_status"],
                         "next_billing_date": update.get("next_billing_date", subscription.get("next_billing_date"))},
        )
        return True

    async def _update_contract(self, contract_id: str, mapped: PaymentStatus) -> bool:
        db = database.get_db()
        status = contract_status_from_payment(mapped.value)
        result = await db.client_contracts.update_one(
            {"contract_id": contract_id},
            {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc).isoformat()}}
        )
        if not result.matched_count:
            logger.info(f"Asaas webhook: contract {contract_id} not found")
            return False

        await create_audit_log(
            action=AuditAction.CONTRACT_PAYMENT_UPDATED,
            resource_type="client_contract",
            resource_id=contract_id,
            metadata={"status": status.value},
        )
        return True


asaas_webhook_service = AsaasWebhookService()
