"""HTTP surface: auth, customer settings, detector passes, alert listing, cron and debug toggles."""
from datetime import timedelta

import pytest

from opswatch.api.routes import get_settings
from opswatch.config import Settings, settings
from opswatch.database import utcnow
from opswatch.detection.engine import pass_lock
from opswatch.errors import ProviderError
from opswatch.main import app
from opswatch.models import Alert


def headers(customer):
    return {"X-API-Key": customer.api_key}


class TestCustomers:
    def test_create_returns_key_once(self, client):
        res = client.post("/api/customers", json={"name": "Acme", "jira_project_key": "KAN"})
        assert res.status_code == 200
        body = res.json()
        assert len(body["api_key"]) == 64

        res = client.get(f"/api/customers/{body['id']}", headers={"X-API-Key": body["api_key"]})
        assert res.status_code == 200
        assert res.json()["jira_project_key"] == "KAN"
        assert "api_key" not in res.json()

    def test_create_rejects_unknown_fields(self, client):
        res = client.post("/api/customers", json={"name": "Acme", "plan": "gold"})
        assert res.status_code == 422

    def test_bad_key_is_401(self, client, make_customer):
        customer = make_customer()
        res = client.get(f"/api/customers/{customer.id}", headers={"X-API-Key": "wrong"})
        assert res.status_code == 401

    def test_other_customer_is_403(self, client, make_customer):
        a = make_customer("A")
        b = make_customer("B")
        res = client.get(f"/api/customers/{b.id}", headers=headers(a))
        assert res.status_code == 403

    def test_state_update(self, client, make_customer):
        customer = make_customer()
        res = client.patch(
            f"/api/customers/{customer.id}/state",
            json={"status": "paused", "reason": "Contract on hold"},
            headers=headers(customer),
        )
        assert res.status_code == 200
        assert res.json() == {"customer_id": customer.id, "status": "paused", "reason": "Contract on hold"}

    def test_state_rejects_unknown_status(self, client, make_customer):
        customer = make_customer()
        res = client.patch(f"/api/customers/{customer.id}/state", json={"status": "gone"}, headers=headers(customer))
        assert res.status_code == 422


class TestSettings:
    def test_defaults(self, client, make_customer):
        customer = make_customer()
        res = client.get(f"/api/customers/{customer.id}/settings", headers=headers(customer))
        assert res.status_code == 200
        body = res.json()
        assert body["missed_payment_grace_days"] == 2
        assert body["jira_activity_lookback"] == "7d"
        assert body["notion_stale_days"] == 14

    def test_partial_update(self, client, make_customer):
        customer = make_customer()
        res = client.patch(
            f"/api/customers/{customer.id}/settings",
            json={"missed_payment_grace_days": 5, "jira_activity_lookback": "2w"},
            headers=headers(customer),
        )
        assert res.status_code == 200
        body = res.json()
        assert body["missed_payment_grace_days"] == 5
        assert body["jira_activity_lookback"] == "2w"
        assert body["amount_drift_threshold_pct"] == 0.25

    @pytest.mark.parametrize(
        "payload",
        [
            {"jira_activity_lookback": "7x"},
            {"amount_drift_threshold_pct": 0.01},
            {"missed_payment_grace_days": -1},
            {"unknown": 1},
        ],
    )
    def test_invalid_update(self, client, make_customer, payload):
        customer = make_customer()
        res = client.patch(f"/api/customers/{customer.id}/settings", json=payload, headers=headers(customer))
        assert res.status_code == 422


class TestDetectAndAlerts:
    def test_detect_then_list_sorted_by_score(self, client, make_customer, add_expectation):
        customer = make_customer(jira_project_key="KAN")
        add_expectation(customer, days_since_paid=40)

        res = client.post(f"/api/customers/{customer.id}/detect/no_recent_client_activity", headers=headers(customer))
        assert res.status_code == 200
        assert res.json()["created"] == 1
        res = client.post(f"/api/customers/{customer.id}/detect/missed_expected_payment", headers=headers(customer))
        assert res.json()["created"] == 1

        res = client.get(f"/api/customers/{customer.id}/alerts", headers=headers(customer))
        assert res.status_code == 200
        alerts = res.json()
        assert [a["type"] for a in alerts] == ["missed_expected_payment", "no_recent_client_activity"]
        assert alerts[0]["severity"] == "critical"
        assert alerts[0]["score"] >= alerts[1]["score"]
        assert alerts[1]["severity"] == "medium"

    def test_limit_keeps_most_urgent(self, client, db, make_customer, add_expectation):
        customer = make_customer(jira_project_key="KAN")
        add_expectation(customer, days_since_paid=40)
        client.post(f"/api/customers/{customer.id}/detect/missed_expected_payment", headers=headers(customer))
        critical = db.query(Alert).one()
        critical.created_at = utcnow() - timedelta(days=2)
        db.commit()
        client.post(f"/api/customers/{customer.id}/detect/no_recent_client_activity", headers=headers(customer))

        res = client.get(f"/api/customers/{customer.id}/alerts?limit=1", headers=headers(customer))
        assert res.status_code == 200
        assert [(a["id"], a["severity"]) for a in res.json()] == [(critical.id, "critical")]

    def test_unknown_detector_is_404(self, client, make_customer):
        customer = make_customer()
        res = client.post(f"/api/customers/{customer.id}/detect/nope", headers=headers(customer))
        assert res.status_code == 404

    def test_pass_in_progress_is_409(self, client, make_customer):
        customer = make_customer()
        with pass_lock(customer.id, "missed_expected_payment"):
            res = client.post(f"/api/customers/{customer.id}/detect/missed_expected_payment", headers=headers(customer))
        assert res.status_code == 409

    def test_manual_close(self, client, db, make_customer, add_expectation):
        customer = make_customer()
        add_expectation(customer, days_since_paid=40)
        client.post(f"/api/customers/{customer.id}/detect/missed_expected_payment", headers=headers(customer))
        alert = db.query(Alert).one()

        res = client.post(f"/api/customers/{customer.id}/alerts/{alert.id}/close", headers=headers(customer))
        assert res.status_code == 200
        assert res.json()["status"] == "closed"
        assert res.json()["closed_at"] is not None

        res = client.get(f"/api/customers/{customer.id}/alerts?status=closed", headers=headers(customer))
        assert [a["id"] for a in res.json()] == [alert.id]
        res = client.get(f"/api/customers/{customer.id}/alerts", headers=headers(customer))
        assert res.json() == []

    def test_cannot_close_another_customers_alert(self, client, db, make_customer, add_expectation):
        owner = make_customer("Owner")
        other = make_customer("Other")
        add_expectation(owner, days_since_paid=40)
        client.post(f"/api/customers/{owner.id}/detect/missed_expected_payment", headers=headers(owner))
        alert = db.query(Alert).one()
        res = client.post(f"/api/customers/{other.id}/alerts/{alert.id}/close", headers=headers(other))
        assert res.status_code == 404

    def test_invalid_status_filter(self, client, make_customer):
        customer = make_customer()
        res = client.get(f"/api/customers/{customer.id}/alerts?status=pending", headers=headers(customer))
        assert res.status_code == 400


def overdue_invoice(invoice_id, days_overdue=30):
    due = (utcnow() - timedelta(days=days_overdue)).strftime("%Y-%m-%d")
    return {"Id": invoice_id, "DocNumber": f"INV-{invoice_id}", "Balance": 1200.0, "TotalAmt": 1200.0, "DueDate": due}


class TestIgnoreInvoice:
    def connected(self, make_customer):
        return make_customer(qbo_realm_id="9130", access_token="tok", refresh_token="ref")

    def test_ignore_then_unignore(self, client, db, make_customer, fakes):
        customer = self.connected(make_customer)
        base = f"/api/customers/{customer.id}"
        fakes["quickbooks"].invoices = [overdue_invoice("1")]
        client.post(f"{base}/detect/qbo_overdue_invoice", headers=headers(customer))
        alert = db.query(Alert).one()

        res = client.post(f"{base}/alerts/{alert.id}/ignore", json={}, headers=headers(customer))
        assert res.status_code == 200
        assert res.json()["entity_id"] == "1"
        assert res.json()["ignored_entity_ids"] == ["1"]
        db.refresh(alert)
        assert alert.status == "closed"

        # Still overdue upstream, but ignored
        res = client.post(f"{base}/detect/qbo_overdue_invoice", headers=headers(customer))
        assert res.json()["created"] == 0
        assert client.get(f"{base}/alerts", headers=headers(customer)).json() == []

        res = client.post(f"{base}/alerts/{alert.id}/ignore", json={"mode": "unignore"}, headers=headers(customer))
        assert res.status_code == 200
        assert res.json()["ignored_entity_ids"] == []
        res = client.post(f"{base}/detect/qbo_overdue_invoice", headers=headers(customer))
        assert res.json()["created"] == 1
        listed = client.get(f"{base}/alerts", headers=headers(customer)).json()
        assert [a["primary_entity_id"] for a in listed] == ["1"]
        assert listed[0]["id"] != alert.id

    def test_aggregate_alert_cannot_be_ignored(self, client, db, make_customer, add_expectation):
        customer = make_customer()
        add_expectation(customer, days_since_paid=40)
        client.post(f"/api/customers/{customer.id}/detect/missed_expected_payment", headers=headers(customer))
        alert = db.query(Alert).one()
        res = client.post(f"/api/customers/{customer.id}/alerts/{alert.id}/ignore", json={}, headers=headers(customer))
        assert res.status_code == 400

    def test_unknown_mode_is_422(self, client, make_customer):
        customer = make_customer()
        res = client.post(f"/api/customers/{customer.id}/alerts/1/ignore", json={"mode": "snooze"}, headers=headers(customer))
        assert res.status_code == 422


class TestCron:
    def test_secret_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        assert client.get("/api/integration-alerts").status_code == 401
        assert client.get("/api/integration-alerts", headers={"X-Cron-Secret": "nope"}).status_code == 401
        assert client.get("/api/integration-alerts", headers={"X-Cron-Secret": "s3cret"}).status_code == 200
        res = client.get("/api/integration-alerts", headers={"Authorization": "Bearer s3cret"})
        assert res.status_code == 200

    def test_daily_run(self, client, monkeypatch, make_customer, add_expectation):
        monkeypatch.setattr(settings, "cron_secret", "")
        customer = make_customer()
        add_expectation(customer, days_since_paid=40)
        res = client.post("/api/cron/daily")
        assert res.status_code == 200
        body = res.json()
        assert body["ok"] is True
        assert body["customers_processed"] == 1
        assert body["created"] == 1

    def test_integration_alerts_listed(self, client, monkeypatch, make_customer, fakes):
        monkeypatch.setattr(settings, "cron_secret", "")
        customer = make_customer(jira_project_key="KAN")
        fakes["jira"].error = ProviderError("jira", "timeout")
        client.post(f"/api/customers/{customer.id}/detect/no_recent_client_activity", headers=headers(customer))

        res = client.get("/api/integration-alerts")
        alerts = res.json()
        assert [(a["primary_entity_id"], a["customer_id"]) for a in alerts] == [("jira", None)]
        assert alerts[0]["severity"] in ("critical", "high", "medium", "low")


class TestDebugToggles:
    def test_toggle_runs_detector(self, client, make_customer):
        customer = make_customer(jira_project_key="KAN")
        res = client.post(
            "/api/debug/toggles",
            json={"key": "jira.no_recent_client_activity", "enabled": True},
            headers=headers(customer),
        )
        assert res.status_code == 200
        body = res.json()
        assert body["value"] == "1m"
        assert body["pass"]["created"] == 1

        res = client.post(
            "/api/debug/toggles",
            json={"key": "jira.no_recent_client_activity", "enabled": False},
            headers=headers(customer),
        )
        assert res.json()["value"] == "7d"

    def test_unknown_toggle_is_400(self, client, make_customer):
        customer = make_customer()
        res = client.post("/api/debug/toggles", json={"key": "nope", "enabled": True}, headers=headers(customer))
        assert res.status_code == 400

    def test_other_customer_is_403(self, client, make_customer):
        a = make_customer("A")
        b = make_customer("B")
        res = client.post(
            "/api/debug/toggles",
            json={"key": "jira.no_recent_client_activity", "enabled": True, "customer_id": b.id},
            headers=headers(a),
        )
        assert res.status_code == 403

    def test_foreign_alert_is_404(self, client, db, make_customer, add_expectation):
        owner = make_customer("Owner")
        other = make_customer("Other")
        add_expectation(owner, days_since_paid=40)
        client.post(f"/api/customers/{owner.id}/detect/missed_expected_payment", headers=headers(owner))
        alert = db.query(Alert).one()
        res = client.post(
            "/api/debug/toggles",
            json={"key": "stripe.missed_expected_payment", "enabled": True, "alert_id": alert.id},
            headers=headers(other),
        )
        assert res.status_code == 404

    def test_disabled_in_production(self, client, make_customer):
        customer = make_customer()
        prod = Settings(_env_file=None, environment="production", cron_secret="s3cret", debug_fixtures_enabled=False)
        app.dependency_overrides[get_settings] = lambda: prod
        res = client.post(
            "/api/debug/toggles",
            json={"key": "jira.no_recent_client_activity", "enabled": True},
            headers=headers(customer),
        )
        assert res.status_code == 403


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
