"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from typing import AsyncGenerator, Optional

import fakeredis
import pytest
import pytest_asyncio
import redis
from httpx import ASGITransport, AsyncClient

from coliving.core.config import settings
from coliving.core.exceptions import UpstreamDispatchError
from coliving.core.security import Role, issue_session_token
from coliving.db.kv import KVStore, get_store
from coliving.main import app
from coliving.models.payment import PaymentRecord, PropertyInfo, TenantContact
from coliving.services.notification_service import DispatchResult, NotificationDispatcher, get_dispatcher
from coliving.services.payment_source import KVPaymentSource, get_payment_source

CRON_SECRET = "test-secret"

# Wednesday
TODAY = date(2026, 10, 14)


class RecordingDispatcher(NotificationDispatcher):
    """Captures sends instead of emailing; can be told to fail."""

    channel = "email"

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Optional[str] = None

    def send(self, to: str, subject: str, body: str) -> DispatchResult:
        if self.fail_with:
            raise UpstreamDispatchError(self.fail_with)
        self.sent.append({"to": to, "subject": subject, "body": body})
        return DispatchResult(message_id=f"msg-{len(self.sent)}")


class BrokenRedis:
    """Redis client stand-in where every command fails."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Inline audit writes and a known cron secret for every test."""
    monkeypatch.setattr(settings, "AUDIT_ASYNC", False)
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(settings, "REMINDER_HOLIDAYS", [])


@pytest.fixture
def store() -> KVStore:
    return KVStore(client=fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def broken_store() -> KVStore:
    return KVStore(client=BrokenRedis())


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def payments(store) -> KVPaymentSource:
    source = KVPaymentSource(store)
    source.save_property(PropertyInfo(id="prop-1", name="Son Tra House", contact_email="house@example.com"))
    source.save_tenant(TenantContact(id="tenant-1", name="Linh Tran", email="linh@example.com"))
    source.save_tenant(TenantContact(id="tenant-2", name="Sam Park", email="sam@example.com"))
    return source


def make_payment(payment_id: str = "pay-1", due_in_days: int = 7, **overrides) -> PaymentRecord:
    data = {
        "id": payment_id,
        "tenant_id": "tenant-1",
        "property_id": "prop-1",
        "amount": 450.0,
        "due_date": TODAY + timedelta(days=due_in_days),
        "status": "pending",
    }
    data.update(overrides)
    return PaymentRecord(**data)


@pytest_asyncio.fixture(scope="function")
async def client(store, payments, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with overridden dependencies."""

    def override_get_store():
        yield store

    app.dependency_overrides[get_store] = override_get_store
    app.dependency_overrides[get_payment_source] = lambda: payments
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def owner_token() -> str:
    return issue_session_token("owner-1", Role.property_owner)


@pytest.fixture
def manager_token() -> str:
    return issue_session_token("manager-1", Role.community_manager)


@pytest.fixture
def tenant_token() -> str:
    return issue_session_token("tenant-1", Role.tenant)


def auth_headers(token: str) -> dict:
    """Create authorization headers."""
    return {"Authorization": f"Bearer {token}"}
