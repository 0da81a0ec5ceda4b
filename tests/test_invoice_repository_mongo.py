"""
Tests for InvoiceRepository against a real MongoDB server.

Skipped unless MONGODB_URI is set. Transaction tests additionally need the
server to be a replica set member.

Covers:
- Conditional payment update: balance moves, PAID flip, short balance untouched
- Concurrent payments never overdraw an invoice
- Unique invoice numbers
- All-or-nothing invoice creation, with and without transactions
"""

import asyncio
import pytest
from datetime import date
from pymongo.errors import PyMongoError

from app.core.exceptions import InvoiceValidationError
from app.models.invoice import InvoiceStatus, LineItem, Payment
from app.repositories.invoice_repo import InvoiceRepository
from app.schemas.invoice import InvoiceCreate, LineItemCreate, PaymentCreate
from app.services.invoice_service import InvoiceService


def _service(db, use_transactions=False):
    repo = InvoiceRepository(db, use_transactions=use_transactions)
    return InvoiceService(repo, reject_payments_on_archived=False)


def _invoice_in(total_cents, invoice_number="INV-100"):
    return InvoiceCreate(
        invoice_number=invoice_number,
        customer_name="Acme Corp",
        issue_date=date(2024, 1, 1),
        due_date=date(2024, 1, 31),
        line_items=[LineItemCreate(description="Wiring", quantity=1, unit_price_cents=total_cents)],
    )


def _duplicate_lines(invoice_id):
    line = LineItem(
        invoice_id=invoice_id,
        description="Repair",
        quantity=1,
        unit_price_cents=100,
        line_total_cents=100,
    )
    # Same _id twice: the second insert fails
    return [line, line]


async def _require_replica_set(db):
    hello = await db.client.admin.command("hello")
    if "setName" not in hello:
        pytest.skip("transactions need a replica set")


async def _balance(db, invoice_id):
    doc = await db["invoices"].find_one({"_id": invoice_id})
    return doc["amount_paid_cents"], doc["balance_due_cents"], doc["status"]


# ===== PAYMENTS =====

@pytest.mark.asyncio
async def test_payments_move_balance_and_flip_status(test_db):
    service = _service(test_db)
    invoice = await service.create_invoice(_invoice_in(100))

    _, updated = await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=40))
    assert updated.amount_paid_cents == 40
    assert updated.balance_due_cents == 60
    assert updated.status == InvoiceStatus.UNPAID

    _, updated = await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=60))
    assert updated.amount_paid_cents == 100
    assert updated.balance_due_cents == 0
    assert updated.status == InvoiceStatus.PAID

    with pytest.raises(InvoiceValidationError) as exc_info:
        await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=1))
    assert exc_info.value.context == {"balance_due_cents": 0}

    assert await _balance(test_db, invoice.id) == (100, 0, "PAID")
    assert await test_db["payments"].count_documents({"invoice_id": invoice.id}) == 2


@pytest.mark.asyncio
async def test_apply_payment_leaves_invoice_untouched_when_balance_short(test_db):
    repo = InvoiceRepository(test_db, use_transactions=False)
    service = InvoiceService(repo, reject_payments_on_archived=False)
    invoice = await service.create_invoice(_invoice_in(100))
    await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=70))

    # Checked against the balance before the 70 cent payment landed
    late = Payment(invoice_id=invoice.id, amount_cents=60)

    assert await repo.apply_payment(late) is None
    assert await _balance(test_db, invoice.id) == (70, 30, "UNPAID")
    assert await test_db["payments"].count_documents({"invoice_id": invoice.id}) == 1


@pytest.mark.asyncio
async def test_concurrent_payments_cannot_overdraw(test_db):
    service = _service(test_db)
    invoice = await service.create_invoice(_invoice_in(100))

    results = await asyncio.gather(
        service.add_payment(str(invoice.id), PaymentCreate(amount_cents=60)),
        service.add_payment(str(invoice.id), PaymentCreate(amount_cents=60)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, InvoiceValidationError)]
    assert len(failures) == 1
    assert failures[0].context == {"balance_due_cents": 40}
    assert await _balance(test_db, invoice.id) == (60, 40, "UNPAID")
    assert await test_db["payments"].count_documents({"invoice_id": invoice.id}) == 1


# ===== CREATE =====

@pytest.mark.asyncio
async def test_duplicate_invoice_number_is_rejected(test_db):
    service = _service(test_db)
    await service.create_invoice(_invoice_in(100, invoice_number="INV-7"))

    with pytest.raises(InvoiceValidationError, match="already exists"):
        await service.create_invoice(_invoice_in(200, invoice_number="INV-7"))

    assert await test_db["invoices"].count_documents({"invoice_number": "INV-7"}) == 1


@pytest.mark.asyncio
async def test_failed_line_insert_removes_invoice(test_db, invoice_factory):
    repo = InvoiceRepository(test_db, use_transactions=False)
    invoice = invoice_factory()

    with pytest.raises(PyMongoError):
        await repo.create_invoice(invoice, _duplicate_lines(invoice.id))

    assert await test_db["invoices"].find_one({"_id": invoice.id}) is None
    assert await test_db["invoice_lines"].count_documents({"invoice_id": invoice.id}) == 0


# ===== TRANSACTIONS =====

@pytest.mark.asyncio
async def test_failed_line_insert_aborts_transaction(test_db, invoice_factory):
    await _require_replica_set(test_db)
    repo = InvoiceRepository(test_db, use_transactions=True)
    invoice = invoice_factory()

    with pytest.raises(PyMongoError):
        await repo.create_invoice(invoice, _duplicate_lines(invoice.id))

    assert await test_db["invoices"].find_one({"_id": invoice.id}) is None
    assert await test_db["invoice_lines"].count_documents({"invoice_id": invoice.id}) == 0


@pytest.mark.asyncio
async def test_payments_inside_transactions(test_db):
    await _require_replica_set(test_db)
    service = _service(test_db, use_transactions=True)
    invoice = await service.create_invoice(_invoice_in(100))

    await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=40))
    _, updated = await service.add_payment(str(invoice.id), PaymentCreate(amount_cents=60))

    assert updated.status == InvoiceStatus.PAID
    assert await _balance(test_db, invoice.id) == (100, 0, "PAID")
    assert await test_db["payments"].count_documents({"invoice_id": invoice.id}) == 2
    assert await test_db["invoice_lines"].count_documents({"invoice_id": invoice.id}) == 1
