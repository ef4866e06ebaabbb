"""
Route-level gating tests (TestClient).
Trial/subscription lock, quota and feature decorators, admin-only plan
catalogue, and the Asaas webhook endpoint.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import auth_headers, make_cursor
from models import PlanBadge, PlanUsage, SubscriptionAccess
from services.plan_limits import PlanLimitsSnapshot, resolve_limits

ALLOWED = SubscriptionAccess(has_access=True, subscription_status="active")


def _snapshot(**usage):
    return PlanLimitsSnapshot(
        account_id="acc-1",
        plan_id="plan_starter",
        plan_name="Starter",
        limits=resolve_limits(None),
        usage=PlanUsage(**usage),
    )


def test_requires_authentication(client):
    response = client.get("/api/account/plan-limits")
    assert response.status_code == 401


def test_expired_trial_is_redirected_to_plan_choice(client):
    access = SubscriptionAccess(has_access=False, is_trial_expired=True, subscription_status="trial")
    audit = AsyncMock()
    with patch("middleware.get_account_access", AsyncMock(return_value=access)), \
         patch("middleware.create_audit_log", audit):
        response = client.get("/api/account/plan-limits", headers=auth_headers())

    assert response.status_code == 403
    assert response.headers["X-Redirect"] == "/choose-plan"
    detail = response.json()["detail"]
    assert detail["error_code"] == "TRIAL_EXPIRED"
    assert detail["subscription_status"] == "trial"
    audit.assert_awaited_once()


def test_running_trial_without_payment_method_is_not_locked(client):
    access = SubscriptionAccess(has_access=False, is_trial_expired=False, subscription_status="trial")
    audit = AsyncMock()
    db = MagicMock()
    db.client_contracts.find_one = AsyncMock(return_value={
        "contract_id": "c1", "status": "active", "start_date": "2026-01-01", "end_date": "2026-12-31",
    })
    with patch("middleware.get_account_access", AsyncMock(return_value=access)), \
         patch("middleware.create_audit_log", audit), \
         patch("routes.clients.database.get_db", return_value=db):
        response = client.get("/api/contracts/c1/timeline", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["timeline"]["total_days"] == 364
    audit.assert_not_called()


def test_non_trial_inactive_status_is_not_locked(client):
    access = SubscriptionAccess(has_access=False, subscription_status="overdue")
    with patch("middleware.get_account_access", AsyncMock(return_value=access)), \
         patch("routes.account.get_plan_limits", AsyncMock(return_value=_snapshot())):
        response = client.get("/api/account/plan-limits", headers=auth_headers())

    assert response.status_code == 200


def test_owner_bypasses_billing_gate(client):
    gate = AsyncMock()
    with patch("middleware.get_account_access", gate), \
         patch("routes.account.get_plan_limits", AsyncMock(return_value=_snapshot())):
        response = client.get("/api/account/plan-limits", headers=auth_headers(role="ROLE_OWNER"))

    assert response.status_code == 200
    gate.assert_not_called()


def test_plan_limits_response(client):
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("routes.account.get_plan_limits", AsyncMock(return_value=_snapshot(clients=45))):
        response = client.get("/api/account/plan-limits", headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["plan_name"] == "Starter"
    assert body["resources"]["clients"]["is_near_limit"] is True
    assert body["resources"]["clients"]["remaining"] == 5


def test_single_resource_limit_alert(client):
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("routes.account.get_plan_limits", AsyncMock(return_value=_snapshot(clients=50))):
        response = client.get("/api/account/plan-limits/clients", headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["level"] == "AT_LIMIT"
    assert body["can_create"] is False


def test_unknown_resource_is_rejected(client):
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)):
        response = client.get("/api/account/plan-limits/spaceships", headers=auth_headers())
    assert response.status_code == 422
    assert "request_id" in response.json()


def test_subscription_status_is_available_to_locked_accounts(client):
    access = SubscriptionAccess(has_access=False, is_trial_expired=True, subscription_status="trial")
    with patch("routes.account.get_account_access", AsyncMock(return_value=access)):
        response = client.get("/api/account/subscription-status", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["is_trial_expired"] is True


def test_create_client_blocked_by_quota(client):
    denied = (False, "You have reached the limit of 50 clients on your Starter plan.", {
        "error_code": "PLAN_LIMIT_EXCEEDED", "resource": "clients", "usage": 50, "limit": 50,
    })
    audit = AsyncMock()
    db = MagicMock()
    db.clients.insert_one = AsyncMock()
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("middleware.enforce_quota", AsyncMock(return_value=denied)), \
         patch("middleware.create_audit_log", audit), \
         patch("routes.clients.database.get_db", return_value=db):
        response = client.post("/api/clients", json={"name": "Acme"}, headers=auth_headers())

    assert response.status_code == 403
    assert response.json()["detail"]["error_code"] == "PLAN_LIMIT_EXCEEDED"
    db.clients.insert_one.assert_not_called()
    audit.assert_awaited_once()


def test_create_client_within_quota(client):
    db = MagicMock()
    db.clients.insert_one = AsyncMock()
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("middleware.enforce_quota", AsyncMock(return_value=(True, None, None))), \
         patch("routes.clients.database.get_db", return_value=db), \
         patch("routes.clients.create_audit_log", AsyncMock()):
        response = client.post("/api/clients", json={"name": "Acme"}, headers=auth_headers())

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Acme"
    assert body["account_id"] == "acc-1"
    db.clients.insert_one.assert_awaited_once()


def test_report_requires_feature(client):
    denied = (False, "reports is not available on your Starter plan", {
        "error_code": "FEATURE_NOT_IN_PLAN", "feature": "reports",
    })
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("middleware.enforce_feature", AsyncMock(return_value=denied)), \
         patch("middleware.create_audit_log", AsyncMock()):
        response = client.get("/api/reports/financial-status", headers=auth_headers())

    assert response.status_code == 403
    assert response.json()["detail"]["error_code"] == "FEATURE_NOT_IN_PLAN"


def test_report_counts_unknown_statuses_as_no_data(client):
    db = MagicMock()
    cursor = make_cursor([
        {"_id": "LATE", "count": 3},
        {"_id": "UP_TO_DATE", "count": 10},
        {"_id": None, "count": 2},
    ])
    db.clients.aggregate = MagicMock(return_value=cursor)
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("middleware.enforce_feature", AsyncMock(return_value=(True, None, None))), \
         patch("routes.clients.database.get_db", return_value=db):
        response = client.get("/api/reports/financial-status", headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["counts"] == {"UP_TO_DATE": 10, "LATE": 3, "DELINQUENT": 0, "NO_DATA": 2}
    assert body["total"] == 15


def test_financial_status_for_foreign_client_is_404(client):
    db = MagicMock()
    db.clients.find_one = AsyncMock(return_value=None)
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("routes.clients.database.get_db", return_value=db):
        response = client.get("/api/clients/c-other/financial-status", headers=auth_headers())
    assert response.status_code == 404


def test_contract_without_dates_has_no_timeline(client):
    db = MagicMock()
    db.client_contracts.find_one = AsyncMock(return_value={"contract_id": "ctr-1", "status": "pending"})
    with patch("middleware.get_account_access", AsyncMock(return_value=ALLOWED)), \
         patch("routes.clients.database.get_db", return_value=db):
        response = client.get("/api/contracts/ctr-1/timeline", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["timeline"] is None


def test_admin_plan_routes_reject_members(client):
    response = client.get("/api/admin/plans", headers=auth_headers(role="ROLE_MEMBER"))
    assert response.status_code == 403


def test_admin_create_plan_with_unknown_feature(client):
    response = client.post(
        "/api/admin/plans",
        json={"name": "Odd", "features": {"time_travel": True}},
        headers=auth_headers(role="ROLE_ADMIN"),
    )
    assert response.status_code == 400
    assert "time_travel" in response.json()["detail"]


def test_asaas_webhook_rejects_bad_token(client, monkeypatch):
    monkeypatch.setenv("ASAAS_WEBHOOK_TOKEN", "s3cret")
    response = client.post("/api/webhooks/asaas", json={"event": "PAYMENT_RECEIVED"},
                           headers={"asaas-access-token": "nope"})
    assert response.status_code == 401


def test_asaas_webhook_processing_failure_returns_400(client, monkeypatch):
    monkeypatch.delenv("ASAAS_WEBHOOK_TOKEN", raising=False)
    failure = (False, "Processing failed", {"event_id": "evt_1", "error": "boom"})
    with patch("routes.webhooks.asaas_webhook_service.process_webhook", AsyncMock(return_value=failure)):
        response = client.post("/api/webhooks/asaas", json={"id": "evt_1", "payment": {"id": "p"}})

    assert response.status_code == 400
    assert response.json()["detail"]["event_id"] == "evt_1"


def test_asaas_webhook_acknowledges(client, monkeypatch):
    monkeypatch.setenv("ASAAS_WEBHOOK_TOKEN", "s3cret")
    ok = (True, "Processed", {"event_id": "evt_2"})
    with patch("routes.webhooks.asaas_webhook_service.process_webhook", AsyncMock(return_value=ok)):
        response = client.post("/api/webhooks/asaas", json={"id": "evt_2", "payment": {"id": "p"}},
                               headers={"asaas-access-token": "s3cret"})

    assert response.status_code == 200
    assert response.json()["received"] is True


def test_asaas_webhook_rejects_non_object_body(client, monkeypatch):
    monkeypatch.delenv("ASAAS_WEBHOOK_TOKEN", raising=False)
    process = AsyncMock()
    with patch("routes.webhooks.asaas_webhook_service.process_webhook", process):
        response = client.post("/api/webhooks/asaas", json=[1, 2])

    assert response.status_code == 400
    process.assert_not_called()


def test_admin_create_duplicate_plan_is_conflict(client):
    db = MagicMock()
    db.subscription_plans.insert_one = AsyncMock(side_effect=Exception("E11000 duplicate key error"))
    with patch("services.plan_registry.database.get_db", return_value=db):
        response = client.post(
            "/api/admin/plans",
            json={"plan_id": "plan_starter", "name": "Starter"},
            headers=auth_headers(role="ROLE_ADMIN"),
        )

    assert response.status_code == 409
    assert "plan_starter" in response.json()["detail"]


def test_start_trial_requires_admin(client):
    start = AsyncMock()
    with patch("routes.account.start_trial", start):
        response = client.post("/api/account/start-trial", json={}, headers=auth_headers(role="ROLE_MEMBER"))

    assert response.status_code == 403
    start.assert_not_called()


def test_start_trial_on_paying_account_is_conflict(client):
    db = MagicMock()
    db.accounts.find_one = AsyncMock(return_value={
        "subscription_status": "active",
        "trial_ends_at": "2025-01-15T00:00:00+00:00",
    })
    db.accounts.update_one = AsyncMock()
    with patch("services.subscription_access.database.get_db", return_value=db):
        response = client.post("/api/account/start-trial", json={}, headers=auth_headers(role="ROLE_ADMIN"))

    assert response.status_code == 409
    assert response.json()["detail"]["error_code"] == "SUBSCRIPTION_ALREADY_ACTIVE"
    db.accounts.update_one.assert_not_called()


def test_plan_badge_route(client):
    badge = PlanBadge(plan_name="Growth", subscription_status="active", is_active=True)
    lookup = AsyncMock(return_value=badge)
    with patch("routes.account.get_account_plan_badge", lookup):
        response = client.get("/api/account/plan-badge", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["plan_name"] == "Growth"
    assert response.json()["is_active"] is True
    lookup.assert_awaited_once_with("acc-1")


def test_plan_badge_route_for_missing_account(client):
    with patch("routes.account.get_account_plan_badge", AsyncMock(return_value=None)):
        response = client.get("/api/account/plan-badge", headers=auth_headers())
    assert response.status_code == 404


def test_audit_history_is_scoped_to_callers_account(client):
    history = AsyncMock(return_value=[{"action": "TRIAL_STARTED"}])
    with patch("routes.account.get_account_audit_logs", history):
        response = client.get(
            "/api/account/audit-history?resource_type=account&limit=500",
            headers=auth_headers(account_id="acc-7", role="ROLE_ADMIN"),
        )

    assert response.status_code == 200
    assert response.json() == {"account_id": "acc-7", "history": [{"action": "TRIAL_STARTED"}]}
    history.assert_awaited_once_with("acc-7", "account", 200)


def test_audit_history_rejects_members(client):
    response = client.get("/api/account/audit-history", headers=auth_headers())
    assert response.status_code == 403
