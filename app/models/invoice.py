"""
Invoice aggregate - an invoice and the line items and payments that point at it.

Design principles:
- Invoice is the aggregate root; line items and payments live in their own
  collections and reference it through ``invoice_id``
- All amounts in integer cents
- total_cents is fixed at creation; only payments move amount_paid_cents
- Line items and payments are immutable once written
"""

from datetime import date, datetime
from enum import Enum

from pydantic import Field, field_validator

from app.models.base import MongoModel, PyObjectId, _utcnow


class InvoiceStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class Invoice(MongoModel):
    """
    Invariants:
    - balance_due_cents == total_cents - amount_paid_cents
    - balance_due_cents >= 0
    - status == PAID iff a payment brought balance_due_cents to 0
    """
    invoice_number: str
    customer_name: str
    issue_date: date
    due_date: date

    total_cents: int = 0
    amount_paid_cents: int = 0
    balance_due_cents: int = 0

    status: InvoiceStatus = InvoiceStatus.UNPAID
    is_archived: bool = False

    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _strip_time(cls, value):
        # Stored as UTC midnight datetimes
        if isinstance(value, datetime):
            return value.date()
        return value


class LineItem(MongoModel):
    invoice_id: PyObjectId
    description: str
    quantity: float
    unit_price_cents: int
    line_total_cents: int


class Payment(MongoModel):
    invoice_id: PyObjectId
    amount_cents: int
    payment_date: datetime = Field(default_factory=_utcnow)
