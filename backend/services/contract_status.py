"""Contract timeline derivation (progress, expiry, remaining time) and
expiry notices for contracts about to end."""
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Union
from database import database
from models import ContractStatus, ContractTimeline, Notification, NotificationType, PaymentStatus
import logging

logger = logging.getLogger(__name__)

NEAR_END_DAYS = 30

# Contracts ending exactly this many days from today get a notice
EXPIRY_NOTICE_DAYS = (30, 60)
URGENT_NOTICE_DAYS = 30
CONTRACT_EXPIRY_SOURCE = "contract_expiry"

DateLike = Union[date, datetime, str, None]


def _parse(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def months_between(later: date, earlier: date) -> int:
    """Full calendar months from `earlier` to `later` (later >= earlier)."""
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if later.day < earlier.day:
        months -= 1
    return max(0, months)


def years_between(later: date, earlier: date) -> int:
    return months_between(later, earlier) // 12


def format_remaining(end: date, today: date) -> str:
    remaining_days = (end - today).days

    if today > end:
        days_expired = abs(remaining_days)
        if days_expired > 365:
            return f"Expired {years_between(today, end)} year(s) ago"
        if days_expired > 30:
            return f"Expired {months_between(today, end)} month(s) ago"
        return f"Expired {days_expired} day(s) ago"

    if remaining_days > 365:
        months = months_between(end, today)
        return f"{months // 12} year(s) and {months % 12} month(s)"
    if remaining_days > 30:
        return f"{months_between(end, today)} month(s)"
    return f"{remaining_days} day(s)"


def get_contract_timeline(
    start_date: DateLike,
    end_date: DateLike,
    now: Optional[DateLike] = None,
) -> Optional[ContractTimeline]:
    """Timeline for a contract; None when either date is missing or invalid.

    A contract is valid through its end date and expires the day after.
    """
    start = _parse(start_date)
    end = _parse(end_date)
    if start is None or end is None:
        return None

    today = _parse(now) if now is not None else datetime.now(timezone.utc).date()

    total_days = (end - start).days
    elapsed_days = (today - start).days
    remaining_days = (end - today).days

    if total_days > 0:
        progress = min(100.0, max(0.0, elapsed_days / total_days * 100))
    else:
        progress = 100.0 if today >= end else 0.0

    is_expired = today > end

    return ContractTimeline(
        start=start,
        end=end,
        total_days=total_days,
        elapsed_days=elapsed_days,
        remaining_days=remaining_days,
        progress=round(progress, 2),
        is_expired=is_expired,
        is_near_end=0 < remaining_days <= NEAR_END_DAYS,
        is_active=not is_expired and today >= start,
        remaining_text=format_remaining(end, today),
    )


def contract_status_from_payment(payment_status: str) -> ContractStatus:
    """Contract status implied by a mapped payment status."""
    if payment_status == PaymentStatus.ACTIVE.value:
        return ContractStatus.ACTIVE
    if payment_status == PaymentStatus.OVERDUE.value:
        return ContractStatus.OVERDUE
    return ContractStatus.PENDING


def expiry_notice_source_id(contract_id: str, days_left: int) -> str:
    return f"contract-expiry-{contract_id}-{days_left}"


def build_expiry_notice(
    contract: Dict,
    client_name: str,
    user_id: str,
    days_left: int,
) -> Notification:
    urgent = days_left <= URGENT_NOTICE_DAYS
    end = _parse(contract["end_date"])
    follow_up = "Urgent: less than 30 days left." if urgent else "Plan the renewal."
    return Notification(
        account_id=contract["account_id"],
        user_id=user_id,
        title=f"Contract expires in {days_left} days",
        content=f"The contract of {client_name} ends on {end.isoformat()}. {follow_up}",
        type=NotificationType.CONTRACT_EXPIRY_URGENT if urgent else NotificationType.CONTRACT_EXPIRY_WARNING,
        link=f"/clients/{contract['client_id']}",
        source_type=CONTRACT_EXPIRY_SOURCE,
        source_id=expiry_notice_source_id(contract["contract_id"], days_left),
    )


async def notify_expiring_contracts(today: Optional[date] = None) -> Dict[str, int]:
    """Notify every user of an account about contracts ending in 30 or 60 days.

    At most one notice per user, contract and window is created per day.
    Returns {"contracts_checked", "notifications_created"}.
    """
    today = today or datetime.now(timezone.utc).date()
    day_start = datetime.combine(today, time.min, tzinfo=timezone.utc).isoformat()
    db = database.get_db()

    target_dates = [(today + timedelta(days=days)).isoformat() for days in EXPIRY_NOTICE_DAYS]
    contracts = await db.client_contracts.find(
        {"end_date": {"$in": target_dates}},
        {"_id": 0, "contract_id": 1, "account_id": 1, "client_id": 1, "end_date": 1}
    ).to_list(None)

    created = 0
    for contract in contracts:
        days_left = (_parse(contract["end_date"]) - today).days

        users = await db.users.find(
            {"account_id": contract["account_id"]},
            {"_id": 0, "user_id": 1}
        ).to_list(None)
        if not users:
            logger.info(f"Contract expiry: no users for account {contract['account_id']}")
            continue

        client = await db.clients.find_one({"client_id": contract["client_id"]}, {"_id": 0, "name": 1})
        client_name = (client or {}).get("name") or "client"
        source_id = expiry_notice_source_id(contract["contract_id"], days_left)

        for user in users:
            already_sent = await db.notifications.find_one(
                {
                    "user_id": user["user_id"],
                    "source_type": CONTRACT_EXPIRY_SOURCE,
                    "source_id": source_id,
                    "created_at": {"$gte": day_start},
                },
                {"_id": 0, "notification_id": 1}
            )
            if already_sent:
                continue

            notice = build_expiry_notice(contract, client_name, user["user_id"], days_left)
            try:
                await db.notifications.insert_one(notice.model_dump(mode="json"))
            except Exception as e:
                logger.error(f"Contract expiry notice failed user_id={user['user_id']} source_id={source_id}: {e}")
                continue
            created += 1

    logger.info(f"Contract expiry check: {len(contracts)} contracts, {created} notifications created")
    return {"contracts_checked": len(contracts), "notifications_created": created}
