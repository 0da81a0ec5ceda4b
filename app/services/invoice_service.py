"""
InvoiceService - Invoice totals, payment application and archive lifecycle.

Payment application order:
1. Amount must be present and > 0
2. Invoice must exist
3. (optional) Invoice must not be archived
4. Amount must not exceed the balance due
5. Conditional update of the invoice + payment insert
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import InvoiceNotFoundError, InvoiceValidationError
from app.models.invoice import Invoice, LineItem, Payment
from app.repositories.invoice_repo import InvoiceRepository
from app.schemas.invoice import InvoiceCreate, PaymentCreate
from app.utils.invoice_validation import (
    validate_line_items,
    calculate_line_total,
    calculate_total,
    validate_payment_amount,
    check_payment_against_balance,
)

logger = logging.getLogger(__name__)


class InvoiceService:
    def __init__(self, repo: InvoiceRepository, reject_payments_on_archived: Optional[bool] = None):
        self.repo = repo
        if reject_payments_on_archived is None:
            reject_payments_on_archived = settings.REJECT_PAYMENTS_ON_ARCHIVED
        self.reject_payments_on_archived = reject_payments_on_archived

    async def create_invoice(self, invoice_in: InvoiceCreate) -> Invoice:
        """Create an invoice; its total is the sum of its line totals."""
        validate_line_items(invoice_in.line_items)

        invoice = Invoice(
            invoice_number=invoice_in.invoice_number,
            customer_name=invoice_in.customer_name,
            issue_date=invoice_in.issue_date,
            due_date=invoice_in.due_date,
        )

        line_items = [
            LineItem(
                invoice_id=invoice.id,
                description=item.description,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=calculate_line_total(item.quantity, item.unit_price_cents),
            )
            for item in invoice_in.line_items
        ]

        total = calculate_total([item.line_total_cents for item in line_items])
        invoice.total_cents = total
        invoice.balance_due_cents = total

        invoice = await self.repo.create_invoice(invoice, line_items)
        logger.info(
            "Created invoice %s (%s) with %d line items, total %d cents",
            invoice.id, invoice.invoice_number, len(line_items), invoice.total_cents
        )
        return invoice

    async def get_invoice(self, invoice_id: str) -> Tuple[Invoice, List[LineItem], List[Payment]]:
        """Invoice with its line items and payments (newest payment first)."""
        invoice = await self._require_invoice(invoice_id)
        line_items = await self.repo.list_line_items(invoice.id)
        payments = await self.repo.list_payments(invoice.id)
        return invoice, line_items, payments

    async def list_invoices(self, archived: bool = False) -> List[Invoice]:
        return await self.repo.list_invoices(archived)

    async def add_payment(self, invoice_id: str, payment_in: PaymentCreate) -> Tuple[Payment, Invoice]:
        """
        Apply a payment against an invoice's balance.

        Raises InvoiceValidationError for a non-positive amount, an archived
        invoice (when configured) or overpayment; InvoiceNotFoundError for an
        unknown invoice. Invoice state is untouched on every rejection.
        """
        amount = validate_payment_amount(payment_in.amount_cents)
        invoice = await self._require_invoice(invoice_id)

        if self.reject_payments_on_archived and invoice.is_archived:
            raise InvoiceValidationError("Cannot add payment to an archived invoice")

        check_payment_against_balance(amount, invoice.balance_due_cents)

        payment = Payment(
            invoice_id=invoice.id,
            amount_cents=amount,
            payment_date=payment_in.payment_date or datetime.now(timezone.utc),
        )

        updated = await self.repo.apply_payment(payment)
        if updated is None:
            # Lost a race with another payment; report the balance as it is now
            current = await self._require_invoice(invoice_id)
            raise InvoiceValidationError(
                "Payment amount cannot exceed balance due",
                balance_due_cents=current.balance_due_cents,
            )

        logger.info(
            "Applied payment of %d cents to invoice %s, balance due %d cents (%s)",
            amount, updated.id, updated.balance_due_cents, updated.status.value
        )
        return payment, updated

    async def archive_invoice(self, invoice_id: str) -> Invoice:
        return await self._set_archived(invoice_id, True)

    async def restore_invoice(self, invoice_id: str) -> Invoice:
        return await self._set_archived(invoice_id, False)

    async def _set_archived(self, invoice_id: str, archived: bool) -> Invoice:
        invoice = await self.repo.set_archived(invoice_id, archived)
        if invoice is None:
            raise InvoiceNotFoundError("Invoice not found")
        logger.info("Invoice %s %s", invoice.id, "archived" if archived else "restored")
        return invoice

    async def _require_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repo.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError("Invoice not found")
        return invoice
