"""Payment, tenant and property lookups consumed by the reminder processor."""

from abc import ABC, abstractmethod
from typing import Optional

from fastapi import Depends

from coliving.db.kv import KVStore, get_store
from coliving.models.payment import OUTSTANDING_STATUSES, PaymentRecord, PropertyInfo, TenantContact


class PaymentSource(ABC):
    """Read-only view of the payment ledger.

    Subclasses must implement list_outstanding, get_payment, get_tenant and
    get_property.
    """

    @abstractmethod
    def list_outstanding(self) -> list[PaymentRecord]:
        """Return all unpaid (pending or overdue) payments."""
        ...

    @abstractmethod
    def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    def get_tenant(self, tenant_id: str) -> Optional[TenantContact]:
        ...

    @abstractmethod
    def get_property(self, property_id: str) -> Optional[PropertyInfo]:
        ...


class KVPaymentSource(PaymentSource):
    """Reads payment records the web app writes into the shared store.

    Layout: ``payment:<id>``, ``tenant:<id>``, ``property:<id>`` JSON records
    and ``payments:status:<status>`` sets of payment IDs.
    """

    def __init__(self, store: KVStore):
        self.store = store

    def list_outstanding(self) -> list[PaymentRecord]:
        ids: set[str] = set()
        for status in OUTSTANDING_STATUSES:
            ids |= self.store.set_members(f"payments:status:{status}")
        raw_payments = self.store.get_many_json([f"payment:{pid}" for pid in sorted(ids)])
        payments = [PaymentRecord.model_validate(raw) for raw in raw_payments if raw]
        return [p for p in payments if p.status in OUTSTANDING_STATUSES]

    def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        raw = self.store.get_json(f"payment:{payment_id}")
        return PaymentRecord.model_validate(raw) if raw else None

    def get_tenant(self, tenant_id: str) -> Optional[TenantContact]:
        raw = self.store.get_json(f"tenant:{tenant_id}")
        return TenantContact.model_validate(raw) if raw else None

    def get_property(self, property_id: str) -> Optional[PropertyInfo]:
        raw = self.store.get_json(f"property:{property_id}")
        return PropertyInfo.model_validate(raw) if raw else None

    def save_payment(self, payment: PaymentRecord) -> None:
        """Write a payment and move it to its status set."""
        previous = self.get_payment(payment.id)
        if previous is not None and previous.status != payment.status:
            self.store.set_remove(f"payments:status:{previous.status}", payment.id)
        self.store.set_json(f"payment:{payment.id}", payment.to_store())
        self.store.set_add(f"payments:status:{payment.status}", payment.id)

    def save_tenant(self, tenant: TenantContact) -> None:
        self.store.set_json(f"tenant:{tenant.id}", tenant.to_store())

    def save_property(self, prop: PropertyInfo) -> None:
        self.store.set_json(f"property:{prop.id}", prop.to_store())


def get_payment_source(store: KVStore = Depends(get_store)) -> PaymentSource:
    """FastAPI dependency providing the payment ledger view."""
    return KVPaymentSource(store)
