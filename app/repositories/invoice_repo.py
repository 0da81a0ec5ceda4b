"""
InvoiceRepository - Persists invoices, their line items and payments.

Collections:
- invoices       aggregate root, carries the running balance
- invoice_lines  one document per line item, keyed by invoice_id
- payments       one document per payment, keyed by invoice_id

Writes that touch more than one document run inside a transaction when
transactions are enabled; otherwise a failed second write is undone by a
compensating write so callers never observe half of an operation.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import InvoiceValidationError
from app.db.mongo import start_transaction
from app.models.base import date_to_datetime, parse_object_id
from app.models.invoice import Invoice, InvoiceStatus, LineItem, Payment

logger = logging.getLogger(__name__)


def _invoice_document(invoice: Invoice) -> dict:
    doc = invoice.model_dump(by_alias=True)
    doc["issue_date"] = date_to_datetime(invoice.issue_date)
    doc["due_date"] = date_to_datetime(invoice.due_date)
    doc["status"] = invoice.status.value
    return doc


class InvoiceRepository:
    """Invoice database operations."""

    def __init__(self, db: AsyncIOMotorDatabase, use_transactions: Optional[bool] = None):
        self.db = db
        self.collection = db["invoices"]
        self.lines = db["invoice_lines"]
        self.payments = db["payments"]
        self.use_transactions = use_transactions

    async def create_invoice(self, invoice: Invoice, line_items: List[LineItem]) -> Invoice:
        """
        Insert an invoice together with its line items, all-or-nothing.

        Raises InvoiceValidationError if the invoice number is taken.
        """
        try:
            async with start_transaction(self.db, self.use_transactions) as session:
                await self.collection.insert_one(_invoice_document(invoice), session=session)
                if line_items:
                    try:
                        await self.lines.insert_many(
                            [item.model_dump(by_alias=True) for item in line_items],
                            session=session
                        )
                    except Exception:
                        if session is None:
                            await self._discard_invoice(invoice.id)
                        raise
        except DuplicateKeyError:
            raise InvoiceValidationError(
                f"Invoice number '{invoice.invoice_number}' already exists"
            )

        return invoice

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        """Get an invoice by id; malformed ids are treated as unknown."""
        oid = parse_object_id(invoice_id)
        if oid is None:
            return None

        doc = await self.collection.find_one({"_id": oid})
        if doc:
            return Invoice(**doc)
        return None

    async def list_invoices(self, archived: bool) -> List[Invoice]:
        """List invoices with the given archive flag, newest first."""
        cursor = self.collection.find({"is_archived": archived}).sort("created_at", -1)
        docs = await cursor.to_list(None)
        return [Invoice(**doc) for doc in docs]

    async def list_line_items(self, invoice_id: ObjectId) -> List[LineItem]:
        docs = await self.lines.find({"invoice_id": invoice_id}).to_list(None)
        return [LineItem(**doc) for doc in docs]

    async def list_payments(self, invoice_id: ObjectId) -> List[Payment]:
        """Payments for an invoice, most recent payment_date first."""
        cursor = self.payments.find({"invoice_id": invoice_id}).sort("payment_date", -1)
        docs = await cursor.to_list(None)
        return [Payment(**doc) for doc in docs]

    async def set_archived(self, invoice_id: str, archived: bool) -> Optional[Invoice]:
        """Set the archive flag. Returns the updated invoice or None if not found."""
        oid = parse_object_id(invoice_id)
        if oid is None:
            return None

        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {
                "is_archived": archived,
                "updated_at": datetime.now(timezone.utc)
            }},
            return_document=ReturnDocument.AFTER
        )
        if doc:
            return Invoice(**doc)
        return None

    async def apply_payment(self, payment: Payment) -> Optional[Invoice]:
        """
        Record a payment and move its amount from balance due to amount paid.

        The invoice update is conditional on the balance still covering the
        payment, so concurrent payments cannot overdraw it. Status becomes
        PAID in the same update when the balance reaches zero.

        Returns the updated invoice, or None if the invoice is gone or its
        balance no longer covers the payment.
        """
        amount = payment.amount_cents

        async with start_transaction(self.db, self.use_transactions) as session:
            doc = await self.collection.find_one_and_update(
                {"_id": payment.invoice_id, "balance_due_cents": {"$gte": amount}},
                [
                    {"$set": {
                        "amount_paid_cents": {"$add": ["$amount_paid_cents", amount]},
                        "balance_due_cents": {"$subtract": ["$balance_due_cents", amount]},
                        "updated_at": datetime.now(timezone.utc)
                    }},
                    {"$set": {
                        "status": {"$cond": [
                            {"$eq": ["$balance_due_cents", 0]},
                            InvoiceStatus.PAID.value,
                            "$status"
                        ]}
                    }}
                ],
                return_document=ReturnDocument.AFTER,
                session=session
            )
            if doc is None:
                return None

            try:
                await self.payments.insert_one(payment.model_dump(by_alias=True), session=session)
            except Exception:
                if session is None:
                    await self._revert_payment(payment.invoice_id, amount)
                raise

        return Invoice(**doc)

    # ===== COMPENSATION =====

    async def _discard_invoice(self, invoice_id: ObjectId) -> None:
        logger.warning("Rolling back partially created invoice %s", invoice_id)
        await self.lines.delete_many({"invoice_id": invoice_id})
        await self.collection.delete_one({"_id": invoice_id})

    async def _revert_payment(self, invoice_id: ObjectId, amount_cents: int) -> None:
        # Balance is positive again after the revert, so the invoice is unpaid
        logger.warning(
            "Reverting payment of %s cents on invoice %s", amount_cents, invoice_id
        )
        await self.collection.update_one(
            {"_id": invoice_id},
            {
                "$inc": {
                    "amount_paid_cents": -amount_cents,
                    "balance_due_cents": amount_cents
                },
                "$set": {
                    "status": InvoiceStatus.UNPAID.value,
                    "updated_at": datetime.now(timezone.utc)
                }
            }
        )
