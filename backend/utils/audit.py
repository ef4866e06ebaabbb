"""Audit trail for billing and access decisions.

Entries record gating denials (access, quota, feature), trial starts, plan
catalogue edits and payment webhook effects. Writing an entry never fails
the operation being audited.
"""
from database import database
from models import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

# Bookkeeping fields that change on every write and say nothing about the change
IGNORED_FIELDS = frozenset({"updated_at"})


def field_changes(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-field changes between two flat documents: {field: {"from": x, "to": y}}.

    A field missing on one side reads as None. Fields in IGNORED_FIELDS are skipped.
    """
    before = before or {}
    after = after or {}
    changes = {}
    for field in sorted(set(before) | set(after)):
        if field in IGNORED_FIELDS:
            continue
        old, new = before.get(field), after.get(field)
        if old != new:
            changes[field] = {"from": old, "to": new}
    return changes


async def create_audit_log(
    action: AuditAction,
    actor_id: Optional[str] = None,
    account_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Store an audit entry and return its id ("" when the write failed).

    When both states are given, the per-field changes are stored alongside
    them so plan and subscription history can be read without diffing.
    """
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        account_id=account_id,
        resource_type=resource_type,
        resource_id=resource_id,
        before_state=before_state,
        after_state=after_state,
        changes=field_changes(before_state, after_state) if before_state and after_state else None,
        metadata=metadata or None,
    )
    try:
        await database.get_db().audit_logs.insert_one(entry.model_dump(mode="json"))
    except Exception as e:
        logger.error(f"Audit write failed action={action.value} account_id={account_id}: {e}")
        return ""

    logger.info(f"Audit {action.value}: {resource_type}/{resource_id} account_id={account_id}")
    return entry.audit_id


async def get_audit_logs_for_resource(
    resource_type: str,
    resource_id: str,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Newest-first history of one resource (e.g. a catalogue plan)."""
    db = database.get_db()
    return await db.audit_logs.find(
        {"resource_type": resource_type, "resource_id": resource_id},
        {"_id": 0}
    ).sort("timestamp", -1).limit(limit).to_list(limit)


async def get_account_audit_logs(
    account_id: str,
    resource_type: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Newest-first history of a tenant account, optionally for one resource type."""
    query: Dict[str, Any] = {"account_id": account_id}
    if resource_type:
        query["resource_type"] = resource_type

    db = database.get_db()
    return await db.audit_logs.find(query, {"_id": 0}).sort("timestamp", -1).limit(limit).to_list(limit)
