from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.invoice import InvoiceStatus


class LineItemCreate(BaseModel):
    """A proposed line item; range checks happen in invoice_validation."""
    description: str
    quantity: float = Field(..., allow_inf_nan=False)
    unit_price_cents: int


class InvoiceCreate(BaseModel):
    invoice_number: str = Field(..., min_length=1, max_length=50)
    customer_name: str = Field(..., min_length=1, max_length=200)
    issue_date: date
    due_date: date
    line_items: List[LineItemCreate] = []


class PaymentCreate(BaseModel):
    # Optional so a missing amount is reported as "Amount must be greater than 0"
    amount_cents: Optional[int] = None
    payment_date: Optional[datetime] = None


class InvoiceResponse(BaseModel):
    id: str
    invoice_number: str
    customer_name: str
    issue_date: date
    due_date: date
    total_cents: int
    amount_paid_cents: int
    balance_due_cents: int
    status: InvoiceStatus
    is_archived: bool
    created_at: datetime
    updated_at: datetime


class LineItemResponse(BaseModel):
    id: str
    invoice_id: str
    description: str
    quantity: float
    unit_price_cents: int
    line_total_cents: int
    created_at: datetime


class PaymentResponse(BaseModel):
    id: str
    invoice_id: str
    amount_cents: int
    payment_date: datetime
    created_at: datetime


class InvoiceDetailResponse(BaseModel):
    invoice: InvoiceResponse
    line_items: List[LineItemResponse]
    payments: List[PaymentResponse]
    total_cents: int
    amount_paid_cents: int
    balance_due_cents: int


class InvoiceBalance(BaseModel):
    amount_paid_cents: int
    balance_due_cents: int
    status: InvoiceStatus


class PaymentResultResponse(BaseModel):
    payment: PaymentResponse
    invoice: InvoiceBalance


class InvoiceActionResponse(BaseModel):
    message: str
    invoice: InvoiceResponse
