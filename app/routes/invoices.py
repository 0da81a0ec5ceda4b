from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.db.mongo import get_db
from app.models.invoice import Invoice, LineItem, Payment
from app.repositories.invoice_repo import InvoiceRepository
from app.schemas.invoice import (
    InvoiceActionResponse,
    InvoiceBalance,
    InvoiceCreate,
    InvoiceDetailResponse,
    InvoiceResponse,
    LineItemResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
)
from app.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


def get_invoice_service(db = Depends(get_db)) -> InvoiceService:
    return InvoiceService(InvoiceRepository(db))


def _to_invoice_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=str(invoice.id),
        invoice_number=invoice.invoice_number,
        customer_name=invoice.customer_name,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        total_cents=invoice.total_cents,
        amount_paid_cents=invoice.amount_paid_cents,
        balance_due_cents=invoice.balance_due_cents,
        status=invoice.status,
        is_archived=invoice.is_archived,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at
    )


def _to_line_item_response(item: LineItem) -> LineItemResponse:
    return LineItemResponse(
        id=str(item.id),
        invoice_id=str(item.invoice_id),
        description=item.description,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        line_total_cents=item.line_total_cents,
        created_at=item.created_at
    )


def _to_payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=str(payment.id),
        invoice_id=str(payment.invoice_id),
        amount_cents=payment.amount_cents,
        payment_date=payment.payment_date,
        created_at=payment.created_at
    )


@router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    archived: Optional[str] = Query(None, description="'true' lists archived invoices only"),
    service: InvoiceService = Depends(get_invoice_service)
):
    """List active invoices, or archived ones with ?archived=true. Newest first."""
    invoices = await service.list_invoices(archived=archived == "true")
    return [_to_invoice_response(invoice) for invoice in invoices]


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    service: InvoiceService = Depends(get_invoice_service)
):
    """Create an invoice with its line items; total is computed from the lines."""
    invoice = await service.create_invoice(invoice_in)
    return _to_invoice_response(invoice)


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service)
):
    """Invoice details with line items and payments."""
    invoice, line_items, payments = await service.get_invoice(invoice_id)
    return InvoiceDetailResponse(
        invoice=_to_invoice_response(invoice),
        line_items=[_to_line_item_response(item) for item in line_items],
        payments=[_to_payment_response(payment) for payment in payments],
        total_cents=invoice.total_cents,
        amount_paid_cents=invoice.amount_paid_cents,
        balance_due_cents=invoice.balance_due_cents
    )


@router.post(
    "/{invoice_id}/payments",
    response_model=PaymentResultResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_payment(
    invoice_id: str,
    payment_in: PaymentCreate,
    service: InvoiceService = Depends(get_invoice_service)
):
    """Apply a payment against the invoice's balance due."""
    payment, invoice = await service.add_payment(invoice_id, payment_in)
    return PaymentResultResponse(
        payment=_to_payment_response(payment),
        invoice=InvoiceBalance(
            amount_paid_cents=invoice.amount_paid_cents,
            balance_due_cents=invoice.balance_due_cents,
            status=invoice.status
        )
    )


@router.post("/{invoice_id}/archive", response_model=InvoiceActionResponse)
async def archive_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service)
):
    invoice = await service.archive_invoice(invoice_id)
    return InvoiceActionResponse(
        message="Invoice archived successfully",
        invoice=_to_invoice_response(invoice)
    )


@router.post("/{invoice_id}/restore", response_model=InvoiceActionResponse)
async def restore_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service)
):
    invoice = await service.restore_invoice(invoice_id)
    return InvoiceActionResponse(
        message="Invoice restored successfully",
        invoice=_to_invoice_response(invoice)
    )
