"""
Fuel reimbursement calculation.

    reimbursement = (distance_km / consumption_km_per_liter) * price_per_liter

rounded to cents. The computed ``total_value`` is what the company pays; the
invoice value the driver actually paid is tracked separately in
``receipt_amount`` so a reviewer can compare the two.
"""

from dataclasses import replace
from typing import Optional

from .models import FuelEntry
from .utils import is_finite_number, money_fmt

CALCULATION_FIELDS = ("distance_km", "price_per_liter", "consumption")


def compute_reimbursement(distance_km, price_per_liter, consumption) -> Optional[float]:
    """
    Compute the reimbursement for a trip.

    Returns None instead of a number when the calculation is blocked: a
    non-finite or non-numeric input, a negative distance or price, or a
    consumption that is not strictly positive.
    """
    if not all(is_finite_number(v) for v in (distance_km, price_per_liter, consumption)):
        return None
    if consumption <= 0 or distance_km < 0 or price_per_liter < 0:
        return None
    return round((distance_km / consumption) * price_per_liter, 2)


def recompute_total(entry: FuelEntry) -> FuelEntry:
    """Return ``entry`` with ``total_value`` refreshed, keeping the prior value if blocked."""
    total = compute_reimbursement(entry.distance_km, entry.price_per_liter, entry.consumption)
    if total is None:
        return entry
    return replace(entry, total_value=total)


def update_fuel_entry(entry: FuelEntry, **changes) -> FuelEntry:
    """
    Apply edits to a fuel entry.

    ``total_value`` is derived and cannot be edited directly. Touching any of
    distance, price or consumption re-runs the calculation.
    """
    if "total_value" in changes:
        raise ValueError("total_value is computed from distance, price and consumption")
    updated = replace(entry, **changes)
    if any(k in changes for k in CALCULATION_FIELDS):
        updated = recompute_total(updated)
    return updated


def reconcile(entry: FuelEntry) -> Optional[str]:
    """Warn when the fuel invoice is lower than the computed reimbursement."""
    if entry.receipt_amount is None:
        return None
    if entry.receipt_amount < entry.total_value:
        return (f"Invoice {money_fmt(entry.receipt_amount)} is lower than the computed "
                f"reimbursement {money_fmt(entry.total_value)}")
    return None
