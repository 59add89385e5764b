"""
Validation of transactions before they are saved.
"""

from typing import List, Tuple

from .fuel import compute_reimbursement
from .models import Expense, FuelEntry, Transaction
from .utils import is_finite_number, normalize_iso_date


class ValidationError(ValueError):
    """A transaction is missing required data; submission is blocked."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def validate_transaction(tx: Transaction, user_id: str) -> Tuple[bool, List[str]]:
    """Validate a transaction and return validation result with error messages."""
    errors = []

    if not user_id:
        errors.append("Owner (user id) is required")
    if not tx.date:
        errors.append("Date is required")
    elif normalize_iso_date(tx.date) != tx.date:
        errors.append(f"Date must be a valid YYYY-MM-DD date, got: {tx.date}")

    if isinstance(tx, Expense):
        if not is_finite_number(tx.amount):
            errors.append("Amount must be a valid number")
    elif isinstance(tx, FuelEntry):
        if not tx.origin.strip() or not tx.destination.strip():
            errors.append("Origin and destination are required")
        if compute_reimbursement(tx.distance_km, tx.price_per_liter, tx.consumption) is None:
            errors.append("Distance, price per liter and consumption must be valid numbers "
                          "and consumption must be greater than 0")
        elif not tx.total_value:
            errors.append("Total value could not be computed")
    else:
        errors.append("Type must be 'receipt' or 'fuel'")

    return len(errors) == 0, errors


def ensure_valid(tx: Transaction, user_id: str):
    """Raise ``ValidationError`` unless the transaction can be saved."""
    ok, errors = validate_transaction(tx, user_id)
    if not ok:
        raise ValidationError(errors)
