import os
from datetime import date, datetime, timezone
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from bson import ObjectId
from fastapi.testclient import TestClient
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core import config
from app.core.exceptions import InvoiceValidationError
from app.db.mongo import create_indexes
from app.main import app
from app.models.base import parse_object_id
from app.models.invoice import Invoice, InvoiceStatus, LineItem, Payment
from app.routes.invoices import get_invoice_service
from app.services.invoice_service import InvoiceService


# Real MongoDB tests run only when a server is configured
TEST_MONGODB_URI = os.getenv("MONGODB_URI")
TEST_MONGODB_DB = "invoices_test"


class InMemoryInvoiceRepository:
    """Stand-in for InvoiceRepository with the same guarantees, kept in dicts."""

    def __init__(self):
        self.invoices: dict = {}
        self.line_items: List[LineItem] = []
        self.payments: List[Payment] = []

    async def create_invoice(self, invoice: Invoice, line_items: List[LineItem]) -> Invoice:
        if any(i.invoice_number == invoice.invoice_number for i in self.invoices.values()):
            raise InvoiceValidationError(
                f"Invoice number '{invoice.invoice_number}' already exists"
            )
        self.invoices[invoice.id] = invoice.model_copy()
        self.line_items.extend(line_items)
        return invoice

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        oid = parse_object_id(invoice_id)
        if oid is None or oid not in self.invoices:
            return None
        return self.invoices[oid].model_copy()

    async def list_invoices(self, archived: bool) -> List[Invoice]:
        matching = [i for i in self.invoices.values() if i.is_archived == archived]
        matching.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy() for i in matching]

    async def list_line_items(self, invoice_id: ObjectId) -> List[LineItem]:
        return [item for item in self.line_items if item.invoice_id == invoice_id]

    async def list_payments(self, invoice_id: ObjectId) -> List[Payment]:
        payments = [p for p in self.payments if p.invoice_id == invoice_id]
        return sorted(payments, key=lambda p: p.payment_date, reverse=True)

    async def set_archived(self, invoice_id: str, archived: bool) -> Optional[Invoice]:
        oid = parse_object_id(invoice_id)
        if oid is None or oid not in self.invoices:
            return None
        self.invoices[oid].is_archived = archived
        return self.invoices[oid].model_copy()

    async def apply_payment(self, payment: Payment) -> Optional[Invoice]:
        invoice = self.invoices.get(payment.invoice_id)
        if invoice is None or invoice.balance_due_cents < payment.amount_cents:
            return None
        invoice.amount_paid_cents += payment.amount_cents
        invoice.balance_due_cents -= payment.amount_cents
        if invoice.balance_due_cents == 0:
            invoice.status = InvoiceStatus.PAID
        self.payments.append(payment)
        return invoice.model_copy()


def make_invoice(**overrides) -> Invoice:
    data = {
        "invoice_number": f"INV-{ObjectId()}",
        "customer_name": "Acme Corp",
        "issue_date": date(2024, 1, 1),
        "due_date": date(2024, 1, 31),
        "total_cents": 10000,
        "amount_paid_cents": 0,
        "balance_due_cents": 10000,
    }
    data.update(overrides)
    return Invoice(**data)


def invoice_doc(**overrides) -> dict:
    """An invoice document as MongoDB returns it."""
    now = datetime.now(timezone.utc)
    doc = {
        "_id": ObjectId(),
        "invoice_number": "INV-001",
        "customer_name": "Acme Corp",
        "issue_date": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "due_date": datetime(2024, 1, 31, tzinfo=timezone.utc),
        "total_cents": 10000,
        "amount_paid_cents": 0,
        "balance_due_cents": 10000,
        "status": "UNPAID",
        "is_archived": False,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def invoice_factory():
    return make_invoice


@pytest.fixture
def invoice_doc_factory():
    return invoice_doc


@pytest.fixture
def memory_repo():
    return InMemoryInvoiceRepository()


@pytest.fixture
def invoice_service(memory_repo):
    return InvoiceService(memory_repo, reject_payments_on_archived=False)


@pytest.fixture
def mock_db():
    """Mock MongoDB database with invoices, invoice_lines and payments collections."""
    collections = {}
    for name in ("invoices", "invoice_lines", "payments"):
        collection = MagicMock()
        collection.find_one = AsyncMock()
        collection.find_one_and_update = AsyncMock()
        collection.insert_one = AsyncMock()
        collection.insert_many = AsyncMock()
        collection.update_one = AsyncMock()
        collection.delete_one = AsyncMock()
        collection.delete_many = AsyncMock()

        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[])
        collection.find.return_value = cursor

        collections[name] = collection

    db = MagicMock()
    db.__getitem__.side_effect = collections.__getitem__
    return db


@pytest.fixture
def client(monkeypatch, invoice_service):
    """Test client wired to the in-memory repository, rate limiting off."""
    monkeypatch.setattr(config.settings, "RATE_LIMIT_ENABLED", False)
    app.dependency_overrides[get_invoice_service] = lambda: invoice_service

    # No context manager: startup would connect to MongoDB
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_db() -> AsyncIOMotorDatabase:
    """Fixture for a real MongoDB test database, dropped before and after each test."""
    if not TEST_MONGODB_URI:
        pytest.skip("MONGODB_URI is not set")

    client = AsyncIOMotorClient(TEST_MONGODB_URI, tz_aware=True)
    db = client[TEST_MONGODB_DB]

    await client.drop_database(TEST_MONGODB_DB)
    await create_indexes(db)

    yield db

    await client.drop_database(TEST_MONGODB_DB)
    client.close()
