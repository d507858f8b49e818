"""Integration tests for the HTTP API."""

from datetime import datetime, timezone

import pytest

from coliving.core.exceptions import StorageError
from coliving.services.audit_service import audit_service
from coliving.services.payment_source import get_payment_source
from coliving.services.reminder_service import reminder_log_service, reminder_settings_service
from coliving.main import app
from tests.conftest import CRON_SECRET, auth_headers, make_payment


class FailingPaymentSource:
    def list_outstanding(self):
        raise StorageError("KV store smembers failed: connection refused")


@pytest.mark.asyncio
class TestCronPaymentReminders:
    """Tests for the scheduler-triggered reminder run."""

    async def test_rejects_wrong_secret(self, client, dispatcher):
        response = await client.post(
            "/api/cron/payment-reminders", headers=auth_headers("wrong-secret"),
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"
        assert dispatcher.sent == []

    async def test_rejects_missing_secret(self, client):
        response = await client.post("/api/cron/payment-reminders")

        assert response.status_code == 401

    async def test_rejects_when_secret_not_configured(self, client, monkeypatch):
        from coliving.core.config import settings

        monkeypatch.setattr(settings, "CRON_SECRET", None)

        response = await client.post("/api/cron/payment-reminders", headers=auth_headers(CRON_SECRET))

        assert response.status_code == 401

    async def test_runs_reminders(self, client, payments, dispatcher):
        """Test a valid call processes payments and reports stats."""
        due = datetime.now(timezone.utc).date()
        payments.save_payment(make_payment(due_date=due))
        payments.save_payment(make_payment("pay-2", status="paid"))

        response = await client.post(
            "/api/cron/payment-reminders", headers=auth_headers(CRON_SECRET),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert "timestamp" in data
        assert data["stats"]["processed"] == 1
        assert data["stats"]["cleanedUpLogs"] == 0
        assert set(data["stats"]) >= {"sent", "skipped", "failed", "errors", "errorMessages"}

    async def test_storage_failure_returns_500(self, client):
        app.dependency_overrides[get_payment_source] = lambda: FailingPaymentSource()

        response = await client.post(
            "/api/cron/payment-reminders", headers=auth_headers(CRON_SECRET),
        )

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert "connection refused" in data["error"]

    async def test_status_probe(self, client):
        response = await client.get(
            "/api/cron/payment-reminders", headers=auth_headers(CRON_SECRET),
        )

        assert response.status_code == 200
        assert response.json()["nextScheduledRun"] == "Daily at 09:00 UTC"


@pytest.mark.asyncio
class TestAuditEndpoint:
    """Tests for the admin audit query."""

    @pytest.fixture
    def seeded(self, store):
        for i in range(3):
            audit_service.create_audit_log(store, {
                "user_id": "admin-1",
                "action": "payment.updated",
                "resource": "payment",
                "resource_id": f"pay-{i}",
            })
        return store

    async def test_page_shape(self, client, seeded, owner_token):
        response = await client.get(
            "/api/admin/audit", params={"limit": 2}, headers=auth_headers(owner_token),
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data["logs"]) == 2
        assert data["logs"][0]["resourceId"] == "pay-2"
        assert data["total"] == 3
        assert data["pagination"] == {"limit": 2, "offset": 0, "hasMore": True}

    async def test_last_page(self, client, seeded, owner_token):
        response = await client.get(
            "/api/admin/audit", params={"limit": 2, "offset": 2}, headers=auth_headers(owner_token),
        )

        data = response.json()
        assert len(data["logs"]) == 1
        assert data["pagination"]["hasMore"] is False

    async def test_user_filter(self, client, seeded, owner_token):
        response = await client.get(
            "/api/admin/audit", params={"userId": "someone-else"}, headers=auth_headers(owner_token),
        )

        assert response.json()["logs"] == []
        assert response.json()["total"] == 0

    async def test_requires_auth(self, client):
        response = await client.get("/api/admin/audit")

        assert response.status_code == 401

    async def test_rejects_forged_session(self, client, owner_token):
        response = await client.get("/api/admin/audit", headers=auth_headers(owner_token + "x"))

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired session"

    async def test_requires_owner(self, client, manager_token):
        response = await client.get("/api/admin/audit", headers=auth_headers(manager_token))

        assert response.status_code == 403
        assert response.json()["detail"] == "Forbidden"

    async def test_user_trail(self, client, seeded, owner_token):
        response = await client.get(
            "/api/admin/audit/users/admin-1", headers=auth_headers(owner_token),
        )

        assert response.status_code == 200
        assert len(response.json()) == 3


@pytest.mark.asyncio
class TestReminderSettingsEndpoints:
    """Tests for reminder settings CRUD."""

    async def test_get_returns_builtin_defaults(self, client, manager_token):
        response = await client.get(
            "/api/reminders/settings", params={"propertyId": "prop-1"}, headers=auth_headers(manager_token),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["propertyId"] == "prop-1"
        assert data["daysBeforeDue"] == [7]
        assert data["daysAfterDue"] == [0, 3]
        assert data["maxRemindersPerPayment"] == 5

    async def test_create(self, client, store, manager_token):
        response = await client.post(
            "/api/reminders/settings",
            json={"propertyId": "prop-1", "daysBeforeDue": [3, 1], "sendOnWeekends": True},
            headers=auth_headers(manager_token),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["daysBeforeDue"] == [1, 3]
        assert data["id"]
        assert reminder_settings_service.get_property_settings(store, "prop-1").send_on_weekends is True
        trail = audit_service.get_resource_audit_trail(store, "reminder_settings", "prop-1")
        assert trail[0].action == "reminder_settings.created"
        assert trail[0].user_id == "manager-1"

    async def test_create_invalid_returns_400(self, client, store, manager_token):
        response = await client.post(
            "/api/reminders/settings",
            json={"propertyId": "prop-1", "daysBeforeDue": [-1], "maxRemindersPerPayment": 11},
            headers=auth_headers(manager_token),
        )

        assert response.status_code == 400
        data = response.json()
        assert data["detail"] == "Invalid request data"
        assert len(data["errors"]) == 2
        assert reminder_settings_service.get_property_settings(store, "prop-1") is None

    async def test_patch_missing_returns_404(self, client, store, manager_token):
        response = await client.patch(
            "/api/reminders/settings",
            json={"propertyId": "prop-1", "enabled": False},
            headers=auth_headers(manager_token),
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Settings not found"
        assert not store.exists("reminder_settings:property:prop-1")

    async def test_patch_existing(self, client, store, manager_token):
        reminder_settings_service.create_reminder_settings(store, {"propertyId": "prop-1", "customMessage": "Hi"})

        response = await client.patch(
            "/api/reminders/settings",
            json={"propertyId": "prop-1", "enabled": False},
            headers=auth_headers(manager_token),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["enabled"] is False
        assert data["customMessage"] == "Hi"

    async def test_tenant_forbidden(self, client, tenant_token):
        response = await client.get("/api/reminders/settings", headers=auth_headers(tenant_token))

        assert response.status_code == 403

    async def test_delete_missing_returns_404(self, client, manager_token):
        response = await client.delete(
            "/api/reminders/settings", params={"propertyId": "prop-1"}, headers=auth_headers(manager_token),
        )

        assert response.status_code == 404


@pytest.mark.asyncio
class TestReminderHistoryEndpoints:

    async def test_tenant_history_and_preferences(self, client, store, manager_token):
        reminder_log_service.create_reminder_log(store, {
            "tenant_id": "tenant-1",
            "payment_id": "pay-1",
            "property_id": "prop-1",
            "reminder_type": "due",
            "status": "sent",
            "sent_at": datetime.now(timezone.utc),
        })

        response = await client.get("/api/reminders/tenant-1", headers=auth_headers(manager_token))

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert response.json()["data"][0]["reminderType"] == "due"

        response = await client.put(
            "/api/reminders/preferences/tenant-1", json={"optOut": True}, headers=auth_headers(manager_token),
        )

        assert response.status_code == 200
        assert response.json()["data"]["optOut"] is True

    async def test_missing_preferences_404(self, client, manager_token):
        response = await client.get("/api/reminders/preferences/tenant-9", headers=auth_headers(manager_token))

        assert response.status_code == 404


@pytest.mark.asyncio
class TestManualReminder:

    async def test_sends_reminder(self, client, store, payments, dispatcher, owner_token):
        payments.save_payment(make_payment(due_in_days=12))

        response = await client.post(
            "/api/payments/pay-1/send-reminder",
            json={"reminderType": "upcoming"},
            headers=auth_headers(owner_token),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["status"] == "sent"
        assert len(dispatcher.sent) == 1
        actions = [e.action for e in audit_service.get_resource_audit_trail(store, "payment", "pay-1")]
        assert "reminder.manual_sent" in actions

    async def test_unknown_payment(self, client, owner_token):
        response = await client.post(
            "/api/payments/missing/send-reminder", json={}, headers=auth_headers(owner_token),
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Payment not found"

    async def test_failed_send_reported(self, client, payments, dispatcher, owner_token):
        payments.save_payment(make_payment(due_in_days=12))
        dispatcher.fail_with = "provider unavailable"

        response = await client.post(
            "/api/payments/pay-1/send-reminder", json={}, headers=auth_headers(owner_token),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "provider unavailable"


@pytest.mark.asyncio
class TestResendWebhook:

    async def test_delivery_event_updates_log(self, client, store):
        entry = reminder_log_service.create_reminder_log(store, {
            "tenant_id": "tenant-1",
            "payment_id": "pay-1",
            "reminder_type": "upcoming",
            "status": "sent",
            "sent_at": datetime.now(timezone.utc),
            "message_id": "msg-42",
        })

        response = await client.post(
            "/api/webhooks/resend", json={"type": "email.opened", "data": {"email_id": "msg-42"}},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "updated": entry.id}
        assert reminder_log_service.get_reminder_log(store, entry.id).opened_at is not None

    async def test_unknown_message(self, client):
        response = await client.post(
            "/api/webhooks/resend", json={"type": "email.delivered", "data": {"email_id": "nope"}},
        )

        assert response.json() == {"success": True, "updated": None}

    async def test_rejects_non_json(self, client):
        response = await client.post(
            "/api/webhooks/resend", content=b"not json", headers={"content-type": "application/json"},
        )

        assert response.status_code == 400


@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_admin_health_reports_redis(self, client):
        response = await client.get("/api/admin/health")

        assert response.json() == {"redis": "ok", "status": "healthy"}

    async def test_request_id_echoed(self, client):
        response = await client.get("/api/health", headers={"X-Request-Id": "sched-123"})

        assert response.headers["X-Request-Id"] == "sched-123"

    async def test_request_id_generated(self, client):
        response = await client.get("/api/health")

        assert len(response.headers["X-Request-Id"]) == 32
