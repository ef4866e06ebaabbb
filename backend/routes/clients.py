from fastapi import APIRouter, HTTPException, Request, status
from datetime import datetime, timezone
from database import database
from middleware import account_route_guard, require_feature, require_quota
from models import AuditAction, Client, ClientCreate, ClientIdList, FinancialStatus, ResourceType
from services.contract_status import get_contract_timeline
from services.financial_status import (
    STATUS_DISPLAY,
    get_client_financial_status,
    get_financial_statuses,
)
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["clients"])


def _with_display(summary) -> dict:
    data = summary.model_dump(mode="json")
    data.update(STATUS_DISPLAY[summary.status])
    return data


@router.post("/clients", status_code=status.HTTP_201_CREATED)
@require_quota(ResourceType.CLIENTS)
async def create_client(request: Request, body: ClientCreate):
    """Create a client; blocked once the plan's client quota is reached."""
    user = request.state.user
    db = database.get_db()

    client = Client(account_id=user["account_id"], **body.model_dump())
    doc = client.model_dump(mode="json")
    await db.clients.insert_one(doc)
    doc.pop("_id", None)

    await create_audit_log(
        action=AuditAction.CLIENT_CREATED,
        actor_id=user.get("user_id"),
        account_id=user["account_id"],
        resource_type="client",
        resource_id=client.client_id,
    )
    return doc


@router.get("/clients/{client_id}/financial-status")
async def get_financial_status(request: Request, client_id: str):
    user = await account_route_guard(request)
    db = database.get_db()

    client = await db.clients.find_one(
        {"client_id": client_id, "account_id": user["account_id"]},
        {"_id": 0, "client_id": 1}
    )
    if not client:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

    summary = await get_client_financial_status(user["account_id"], client_id)
    return {"client_id": client_id, **_with_display(summary)}


@router.post("/clients/financial-statuses")
async def get_bulk_financial_statuses(request: Request, body: ClientIdList):
    """Financial status for many clients at once (client tables)."""
    user = await account_route_guard(request)

    try:
        statuses = await get_financial_statuses(user["account_id"], body.client_ids)
    except Exception as e:
        logger.error(f"Bulk financial status error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load financial statuses"
        )

    return {
        "statuses": {client_id: _with_display(summary) for client_id, summary in statuses.items()}
    }


@router.get("/reports/financial-status")
@require_feature("reports")
async def get_financial_status_report(request: Request):
    """Clients per cached financial status (refreshed daily)."""
    user = request.state.user
    db = database.get_db()

    pipeline = [
        {"$match": {"account_id": user["account_id"]}},
        {"$group": {"_id": "$financial_status", "count": {"$sum": 1}}},
    ]
    rows = await db.clients.aggregate(pipeline).to_list(None)

    counts = {s.value: 0 for s in FinancialStatus}
    for row in rows:
        key = row["_id"] if row["_id"] in counts else FinancialStatus.NO_DATA.value
        counts[key] += row["count"]

    return {
        "counts": counts,
        "total": sum(counts.values()),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/contracts/{contract_id}/timeline")
async def get_timeline(request: Request, contract_id: str):
    user = await account_route_guard(request)
    db = database.get_db()

    contract = await db.client_contracts.find_one(
        {"contract_id": contract_id, "account_id": user["account_id"]},
        {"_id": 0}
    )
    if not contract:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")

    timeline = get_contract_timeline(contract.get("start_date"), contract.get("end_date"))
    return {
        "contract_id": contract_id,
        "status": contract.get("status"),
        "timeline": timeline.model_dump(mode="json") if timeline else None,
    }
