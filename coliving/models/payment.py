"""Read-side views of payments, tenants and properties owned by the main app."""

from datetime import date
from typing import Optional

from pydantic import Field

from coliving.models.audit import CamelModel

OUTSTANDING_STATUSES = ("pending", "overdue")


class PaymentRecord(CamelModel):
    id: str
    tenant_id: str
    property_id: Optional[str] = None
    amount: float
    currency: str = "USD"
    due_date: date
    status: str = "pending"  # pending, overdue, paid, refunded
    reference: Optional[str] = None


class TenantContact(CamelModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None


class PropertyInfo(CamelModel):
    id: str
    name: str
    contact_email: Optional[str] = None
    payment_methods: list[str] = Field(default_factory=lambda: ["Bank Transfer", "Cash"])
