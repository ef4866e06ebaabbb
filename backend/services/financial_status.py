"""Client Financial Status - overdue receivable classification.

A client's financial status is derived from its receivable entries that are
still open (pending or scheduled) and whose due date is before today:

- UP_TO_DATE: no overdue receivables
- LATE: oldest overdue receivable is 1-30 days late
- DELINQUENT: oldest overdue receivable is more than 30 days late
- NO_DATA: status not computed yet (never produced from data)

The pure helpers take `today` explicitly so list views, the refresh job and
tests all agree on the reference day.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
from database import database
from models import EntryStatus, EntryType, FinancialStatus, FinancialStatusSummary
import logging

logger = logging.getLogger(__name__)

DELINQUENT_AFTER_DAYS = 30

OPEN_ENTRY_STATUSES = [EntryStatus.PENDING.value, EntryStatus.SCHEDULED.value]

STATUS_DISPLAY = {
    FinancialStatus.UP_TO_DATE: {
        "label": "Up to date",
        "description": "Client has no outstanding payments",
    },
    FinancialStatus.LATE: {
        "label": "Late",
        "description": "Client has payments overdue by 1-30 days",
    },
    FinancialStatus.DELINQUENT: {
        "label": "Delinquent",
        "description": "Client has payments overdue by more than 30 days",
    },
    FinancialStatus.NO_DATA: {
        "label": "-",
        "description": "No financial data",
    },
}

DateLike = Union[date, datetime, str]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # ISO strings, with or without a time component
    return date.fromisoformat(str(value)[:10])


def days_overdue(due_date: DateLike, today: Optional[DateLike] = None) -> int:
    """Whole days between due date and today (negative when not yet due)."""
    reference = _to_date(today) if today is not None else utc_today()
    return (reference - _to_date(due_date)).days


def classify_days_overdue(max_days: int) -> FinancialStatus:
    if max_days > DELINQUENT_AFTER_DAYS:
        return FinancialStatus.DELINQUENT
    if max_days > 0:
        return FinancialStatus.LATE
    return FinancialStatus.UP_TO_DATE


def summarize_overdue_entries(
    entries: Iterable[Dict[str, Any]],
    today: Optional[DateLike] = None,
) -> FinancialStatusSummary:
    """Summarize a client's overdue receivables into a status."""
    entries = list(entries or [])
    if not entries:
        return FinancialStatusSummary(status=FinancialStatus.UP_TO_DATE)

    reference = _to_date(today) if today is not None else utc_today()
    max_days = 0
    total_amount = 0.0

    for entry in entries:
        max_days = max(max_days, days_overdue(entry["due_date"], reference))
        total_amount += entry.get("amount") or 0

    return FinancialStatusSummary(
        status=classify_days_overdue(max_days),
        overdue_count=len(entries),
        overdue_amount=total_amount,
        max_days_overdue=max_days,
    )


def _overdue_query(account_id: str, today: date) -> Dict[str, Any]:
    return {
        "account_id": account_id,
        "entry_type": EntryType.RECEIVABLE.value,
        "status": {"$in": OPEN_ENTRY_STATUSES},
        "due_date": {"$lt": today.isoformat()},
    }


async def get_client_financial_status(
    account_id: str,
    client_id: str,
    today: Optional[date] = None,
) -> FinancialStatusSummary:
    """Financial status for one client.

    Lookup failures degrade to UP_TO_DATE so list views keep rendering.
    """
    today = today or utc_today()
    db = database.get_db()

    query = _overdue_query(account_id, today)
    query["client_id"] = client_id

    try:
        entries = await db.financial_entries.find(
            query,
            {"_id": 0, "entry_id": 1, "amount": 1, "due_date": 1}
        ).to_list(None)
        return summarize_overdue_entries(entries, today)
    except Exception as e:
        logger.error(f"Financial status lookup failed for client {client_id}: {e}")
        return FinancialStatusSummary(status=FinancialStatus.UP_TO_DATE)


async def get_financial_statuses(
    account_id: str,
    client_ids: List[str],
    today: Optional[date] = None,
) -> Dict[str, FinancialStatusSummary]:
    """Bulk financial status for a client table (single query)."""
    today = today or utc_today()
    if not client_ids:
        return {}

    db = database.get_db()
    query = _overdue_query(account_id, today)
    query["client_id"] = {"$in": list(client_ids)}

    entries = await db.financial_entries.find(
        query,
        {"_id": 0, "client_id": 1, "amount": 1, "due_date": 1}
    ).to_list(None)

    grouped: Dict[str, List[Dict[str, Any]]] = {client_id: [] for client_id in client_ids}
    for entry in entries:
        grouped.setdefault(entry["client_id"], []).append(entry)

    return {
        client_id: summarize_overdue_entries(grouped[client_id], today)
        for client_id in client_ids
    }


async def refresh_cached_financial_statuses(today: Optional[date] = None) -> int:
    """Recompute and store `financial_status` on every client.

    Returns the number of clients whose cached status changed.
    """
    today = today or utc_today()
    db = database.get_db()
    now = datetime.now(timezone.utc).isoformat()

    entries = await db.financial_entries.find(
        {
            "entry_type": EntryType.RECEIVABLE.value,
            "status": {"$in": OPEN_ENTRY_STATUSES},
            "due_date": {"$lt": today.isoformat()},
            "client_id": {"$ne": None},
        },
        {"_id": 0, "client_id": 1, "amount": 1, "due_date": 1}
    ).to_list(None)

    by_client: Dict[str, List[Dict[str, Any]]] = {}
    for entry in entries:
        by_client.setdefault(entry["client_id"], []).append(entry)

    updated = 0
    clients = await db.clients.find(
        {},
        {"_id": 0, "client_id": 1, "financial_status": 1}
    ).to_list(None)

    for client in clients:
        summary = summarize_overdue_entries(by_client.get(client["client_id"], []), today)
        if client.get("financial_status") == summary.status.value:
            continue
        await db.clients.update_one(
            {"client_id": client["client_id"]},
            {"$set": {
                "financial_status": summary.status.value,
                "financial_status_updated_at": now,
            }}
        )
        updated += 1

    logger.info(f"Financial status refresh: {updated} of {len(clients)} clients changed")
    return updated
