"""Audit changes, audit persistence, tenant history and role hierarchy tests."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from auth import check_rbac, create_access_token, decode_access_token
from conftest import make_cursor
from models import AuditAction, UserRole
from utils.audit import create_audit_log, field_changes, get_account_audit_logs


def test_field_changes_reports_changed_added_and_removed_fields():
    changes = field_changes(
        {"price": 97.0, "name": "Starter", "legacy": True},
        {"price": 117.0, "name": "Starter", "trial_days": 7},
    )
    assert changes == {
        "legacy": {"from": True, "to": None},
        "price": {"from": 97.0, "to": 117.0},
        "trial_days": {"from": None, "to": 7},
    }


def test_field_changes_ignores_updated_at():
    assert field_changes(
        {"is_active": True, "updated_at": "2026-01-01"},
        {"is_active": True, "updated_at": "2026-02-01"},
    ) == {}


@pytest.mark.asyncio
async def test_create_audit_log_stores_field_changes():
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock()
    with patch("utils.audit.database.get_db", return_value=db):
        audit_id = await create_audit_log(
            action=AuditAction.PLAN_UPDATED,
            account_id="acc-1",
            resource_type="plan",
            resource_id="plan_starter",
            before_state={"price": 97.0},
            after_state={"price": 117.0},
        )

    assert audit_id
    doc = db.audit_logs.insert_one.call_args[0][0]
    assert doc["action"] == "PLAN_UPDATED"
    assert doc["account_id"] == "acc-1"
    assert doc["changes"] == {"price": {"from": 97.0, "to": 117.0}}


@pytest.mark.asyncio
async def test_create_audit_log_without_states_has_no_changes():
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock()
    with patch("utils.audit.database.get_db", return_value=db):
        await create_audit_log(action=AuditAction.ACCESS_DENIED, metadata={"path": "/api/clients"})

    doc = db.audit_logs.insert_one.call_args[0][0]
    assert doc["changes"] is None
    assert doc["metadata"] == {"path": "/api/clients"}


@pytest.mark.asyncio
async def test_create_audit_log_never_raises():
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock(side_effect=RuntimeError("disk full"))
    with patch("utils.audit.database.get_db", return_value=db):
        assert await create_audit_log(action=AuditAction.ACCESS_DENIED) == ""


@pytest.mark.asyncio
async def test_account_history_is_tenant_scoped():
    db = MagicMock()
    cursor = make_cursor([{"action": "TRIAL_STARTED"}])
    db.audit_logs.find = MagicMock(return_value=cursor)
    with patch("utils.audit.database.get_db", return_value=db):
        logs = await get_account_audit_logs("acc-1", resource_type="account", limit=10)

    assert logs == [{"action": "TRIAL_STARTED"}]
    assert db.audit_logs.find.call_args[0][0] == {"account_id": "acc-1", "resource_type": "account"}
    cursor.sort.assert_called_once_with("timestamp", -1)
    cursor.limit.assert_called_once_with(10)


@pytest.mark.asyncio
async def test_account_history_without_resource_filter():
    db = MagicMock()
    db.audit_logs.find = MagicMock(return_value=make_cursor([]))
    with patch("utils.audit.database.get_db", return_value=db):
        await get_account_audit_logs("acc-1")
    assert db.audit_logs.find.call_args[0][0] == {"account_id": "acc-1"}


def test_role_hierarchy():
    assert check_rbac("ROLE_OWNER", UserRole.ROLE_ADMIN) is True
    assert check_rbac("ROLE_ADMIN", UserRole.ROLE_ADMIN) is True
    assert check_rbac("ROLE_MEMBER", UserRole.ROLE_ADMIN) is False
    assert check_rbac(None, UserRole.ROLE_MEMBER) is False


def test_token_round_trip_and_tamper():
    token = create_access_token({"user_id": "u1", "account_id": "acc-1"})
    assert decode_access_token(token)["account_id"] == "acc-1"
    assert decode_access_token(token + "x") is None
