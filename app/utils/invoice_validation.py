"""Invoice validation and totals utilities."""
import math
from typing import List, Optional

from app.core.exceptions import InvoiceValidationError
from app.schemas.invoice import LineItemCreate

# Amounts are stored as BSON int64
MAX_CENTS = 2**63 - 1


def validate_line_items(line_items: List[LineItemCreate]) -> None:
    """
    Validate proposed line items.

    Rules:
    - description must not be blank
    - quantity must be a finite positive number
    - unit_price_cents must be non-negative and fit in int64
    """
    for index, item in enumerate(line_items, start=1):
        if not item.description or not item.description.strip():
            raise InvoiceValidationError(
                f"Line item {index} is missing a description"
            )

        if not math.isfinite(item.quantity):
            raise InvoiceValidationError(
                f"Line item '{item.description}' has invalid quantity: {item.quantity}"
            )

        if item.quantity <= 0:
            raise InvoiceValidationError(
                f"Line item '{item.description}' has non-positive quantity: {item.quantity}"
            )

        if item.unit_price_cents < 0:
            raise InvoiceValidationError(
                f"Line item '{item.description}' has negative price: {item.unit_price_cents}"
            )

        if item.unit_price_cents > MAX_CENTS:
            raise InvoiceValidationError(
                f"Line item '{item.description}' has a price that is too large"
            )


def calculate_line_total(quantity: float, unit_price_cents: int) -> int:
    """quantity * unit price, rounded to whole cents."""
    line_total = quantity * unit_price_cents
    if not math.isfinite(line_total) or line_total > MAX_CENTS:
        raise InvoiceValidationError("Line item total is too large")
    return int(round(line_total))


def calculate_total(line_totals_cents: List[int]) -> int:
    """Sum of line totals; an invoice without lines totals 0."""
    total = sum(line_totals_cents)
    if total > MAX_CENTS:
        raise InvoiceValidationError("Invoice total is too large")
    return total


def validate_payment_amount(amount_cents: Optional[int]) -> int:
    """Reject a missing, non-positive or out-of-range payment amount."""
    if amount_cents is None or amount_cents <= 0:
        raise InvoiceValidationError("Amount must be greater than 0")
    if amount_cents > MAX_CENTS:
        raise InvoiceValidationError("Amount is too large")
    return amount_cents


def check_payment_against_balance(amount_cents: int, balance_due_cents: int) -> None:
    """Overpayment is never clamped; the caller gets the current balance back."""
    if amount_cents > balance_due_cents:
        raise InvoiceValidationError(
            "Payment amount cannot exceed balance due",
            balance_due_cents=balance_due_cents,
        )
