"""Unit tests for the append-only audit log."""

import logging

import fakeredis
import pytest
import redis
from kombu.exceptions import OperationalError

from coliving.core.config import settings
from coliving.db.kv import KVStore
from coliving.models.audit import AuditLogFilter
from coliving.services.audit_service import GLOBAL_INDEX, audit_service, user_index


def audit_params(**overrides) -> dict:
    params = {
        "user_id": "admin-1",
        "action": "reminder_settings.updated",
        "resource": "reminder_settings",
        "resource_id": "prop-1",
        "changes": {"enabled": False},
    }
    params.update(overrides)
    return params


class TestCreateAuditLog:
    """Tests for writing audit entries."""

    def test_entry_appears_once_in_user_trail(self, store):
        """Test a new entry shows up exactly once in the user's trail."""
        audit_service.create_audit_log(store, audit_params(ip_address="10.0.0.1"))

        trail = audit_service.get_user_audit_trail(store, "admin-1")

        assert len(trail) == 1
        entry = trail[0]
        assert entry.action == "reminder_settings.updated"
        assert entry.changes == {"enabled": False}
        assert entry.ip_address == "10.0.0.1"
        assert entry.id.startswith("audit_")

    def test_writes_all_three_indexes(self, store):
        """Test the entry ID is pushed to global, user and resource indexes."""
        audit_service.create_audit_log(store, audit_params())

        ids = store.list_range(GLOBAL_INDEX, 0, -1)
        assert len(ids) == 1
        assert store.list_range(user_index("admin-1"), 0, -1) == ids
        assert store.list_range("audit:resource:reminder_settings:prop-1", 0, -1) == ids
        assert store.get_json(f"audit:{ids[0]}")["userId"] == "admin-1"

    def test_never_raises_when_store_rejects_writes(self, broken_store):
        """Test storage failures are swallowed."""
        assert audit_service.create_audit_log(broken_store, audit_params()) is None

    def test_never_raises_on_malformed_params(self, store):
        """Test invalid params are logged and dropped."""
        audit_service.create_audit_log(store, {"action": "x"})

        assert store.list_length(GLOBAL_INDEX) == 0

    def test_indexes_are_capped(self, store, monkeypatch):
        """Test per-user index is trimmed to its cap, newest kept."""
        monkeypatch.setattr(settings, "AUDIT_USER_CAP", 3)
        for i in range(5):
            audit_service.create_audit_log(store, audit_params(resource_id=f"prop-{i}"))

        trail = audit_service.get_user_audit_trail(store, "admin-1")

        assert len(trail) == 3
        assert [e.resource_id for e in trail] == ["prop-4", "prop-3", "prop-2"]
        assert store.list_length(GLOBAL_INDEX) == 5


class TestGetAuditLogs:
    """Tests for reading audit entries back."""

    @pytest.fixture
    def seeded(self, store):
        audit_service.create_audit_log(store, audit_params(action="payment.updated", resource="payment", resource_id="pay-1"))
        audit_service.create_audit_log(store, audit_params(action="reminder.sent", user_id="system", resource="payment", resource_id="pay-1"))
        audit_service.create_audit_log(store, audit_params(action="payment.updated", resource="payment", resource_id="pay-2"))
        audit_service.create_audit_log(store, audit_params(action="tenant.updated", user_id="manager-1", resource="tenant", resource_id="tenant-1"))
        return store

    def test_newest_first(self, seeded):
        """Test entries come back in reverse creation order."""
        result = audit_service.get_audit_logs(seeded, AuditLogFilter())

        assert [e.action for e in result["logs"]] == [
            "tenant.updated", "payment.updated", "reminder.sent", "payment.updated",
        ]
        assert result["total"] == 4

    def test_action_filter_total_is_unfiltered_index_size(self, seeded):
        """Test action filter narrows logs while total stays the index length."""
        result = audit_service.get_audit_logs(seeded, AuditLogFilter(action="payment.updated"))

        assert len(result["logs"]) == 2
        assert all(e.action == "payment.updated" for e in result["logs"])
        # total counts the whole global index, not the two filtered entries
        assert result["total"] == 4

    def test_user_filter_uses_user_index(self, seeded):
        result = audit_service.get_audit_logs(seeded, AuditLogFilter(user_id="admin-1"))

        assert len(result["logs"]) == 2
        assert result["total"] == 2

    def test_resource_filter_uses_resource_index(self, seeded):
        result = audit_service.get_audit_logs(
            seeded, AuditLogFilter(resource="payment", resource_id="pay-1"),
        )

        assert [e.action for e in result["logs"]] == ["reminder.sent", "payment.updated"]
        assert result["total"] == 2

    def test_resource_type_only_filters_global_page(self, seeded):
        """Test a resource filter without an ID is applied to the global page."""
        result = audit_service.get_audit_logs(seeded, AuditLogFilter(resource="tenant"))

        assert len(result["logs"]) == 1
        assert result["total"] == 4

    def test_user_and_resource_filters_combine(self, seeded):
        result = audit_service.get_audit_logs(
            seeded, AuditLogFilter(user_id="admin-1", resource="payment", resource_id="pay-2"),
        )

        assert len(result["logs"]) == 1
        assert result["logs"][0].resource_id == "pay-2"

    def test_pagination(self, seeded):
        """Test limit/offset slice the index before filtering."""
        result = audit_service.get_audit_logs(seeded, AuditLogFilter(limit=2, offset=1))

        assert [e.action for e in result["logs"]] == ["payment.updated", "reminder.sent"]
        assert result["total"] == 4

    def test_unresolvable_ids_skipped(self, seeded):
        """Test a dangling index entry is skipped silently."""
        seeded.push_capped(GLOBAL_INDEX, "audit_missing", 100)

        result = audit_service.get_audit_logs(seeded, AuditLogFilter())

        assert len(result["logs"]) == 4
        assert result["total"] == 5

    def test_resource_trail(self, seeded):
        trail = audit_service.get_resource_audit_trail(seeded, "tenant", "tenant-1")

        assert len(trail) == 1
        assert trail[0].user_id == "manager-1"


class TestRecord:
    """Tests for the fire-and-forget entry point."""

    def test_inline_when_async_disabled(self, store):
        audit_service.record(store, **audit_params())

        assert store.list_length(GLOBAL_INDEX) == 1

    def test_enqueues_when_async_enabled(self, store, monkeypatch):
        from coliving.tasks.celery_app import write_audit_entry

        queued = []
        monkeypatch.setattr(settings, "AUDIT_ASYNC", True)
        monkeypatch.setattr(write_audit_entry, "delay", lambda payload: queued.append(payload))

        audit_service.record(store, **audit_params())

        assert len(queued) == 1
        assert queued[0]["userId"] == "admin-1"
        assert store.list_length(GLOBAL_INDEX) == 0

    def test_falls_back_inline_when_broker_down(self, store, monkeypatch):
        from coliving.tasks.celery_app import write_audit_entry

        def broker_down(payload):
            raise OperationalError("broker unreachable")

        monkeypatch.setattr(settings, "AUDIT_ASYNC", True)
        monkeypatch.setattr(write_audit_entry, "delay", broker_down)

        audit_service.record(store, **audit_params())

        assert store.list_length(GLOBAL_INDEX) == 1

    def test_malformed_record_dropped(self, store):
        audit_service.record(store, action="missing.fields")

        assert store.list_length(GLOBAL_INDEX) == 0

    def test_falls_back_inline_on_unexpected_enqueue_error(self, store, monkeypatch):
        from coliving.tasks.celery_app import write_audit_entry

        def bad_payload(payload):
            raise TypeError("Object of type set is not JSON serializable")

        monkeypatch.setattr(settings, "AUDIT_ASYNC", True)
        monkeypatch.setattr(write_audit_entry, "delay", bad_payload)

        audit_service.record(store, **audit_params())

        assert store.list_length(GLOBAL_INDEX) == 1


class FlakyRedis:
    """Wraps a fake Redis and fails the first ``failures`` writes of an entry."""

    def __init__(self, failures: int):
        self._inner = fakeredis.FakeRedis(decode_responses=True)
        self.failures = failures
        self.attempts = 0

    def set(self, *args, **kwargs):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise redis.ConnectionError("connection reset")
        return self._inner.set(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class TestWriteAuditEntryTask:
    """Tests for the background audit write and its retry policy."""

    def run_task(self, monkeypatch, client):
        from coliving.tasks.celery_app import write_audit_entry

        task_store = KVStore(client=client)
        monkeypatch.setattr("coliving.db.kv.kv_store", task_store)
        result = write_audit_entry.apply(args=[audit_params()])
        return task_store, result

    def test_writes_entry(self, monkeypatch):
        task_store, result = self.run_task(monkeypatch, FlakyRedis(failures=0))

        assert result.successful()
        assert task_store.list_length(GLOBAL_INDEX) == 1
        assert audit_service.get_user_audit_trail(task_store, "admin-1")[0].action == "reminder_settings.updated"

    def test_retries_after_store_failure(self, monkeypatch):
        client = FlakyRedis(failures=2)

        task_store, result = self.run_task(monkeypatch, client)

        assert result.successful()
        assert client.attempts == 3
        assert task_store.list_length(GLOBAL_INDEX) == 1

    def test_drops_entry_after_max_retries(self, monkeypatch, caplog):
        from coliving.tasks.celery_app import write_audit_entry

        client = FlakyRedis(failures=100)

        with caplog.at_level(logging.ERROR, logger="coliving"):
            task_store, result = self.run_task(monkeypatch, client)

        assert result.successful()
        assert client.attempts == write_audit_entry.max_retries + 1
        assert task_store.list_length(GLOBAL_INDEX) == 0
        assert "Dropping audit entry reminder_settings.updated" in caplog.text
