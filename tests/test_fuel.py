import math

import pytest

from field_expenses.core.fuel import (compute_reimbursement, reconcile, recompute_total,
                                      update_fuel_entry)
from field_expenses.core.models import FuelEntry


def make_entry(**kw):
    defaults = dict(date="2024-03-01", origin="Campinas", destination="Sorocaba",
                    distance_km=100.0, price_per_liter=5.0, consumption=10.0)
    defaults.update(kw)
    return recompute_total(FuelEntry(**defaults))


def test_compute_reimbursement_formula():
    assert compute_reimbursement(100, 5.0, 10) == 50.0
    assert compute_reimbursement(33, 5.79, 9) == round(33 / 9 * 5.79, 2)
    assert compute_reimbursement(0, 5.0, 10) == 0.0


@pytest.mark.parametrize("distance,price,consumption", [
    (100, 5.0, 0),
    (100, 5.0, -2),
    (-1, 5.0, 10),
    (100, -5.0, 10),
    (math.nan, 5.0, 10),
    (100, math.inf, 10),
    ("100", 5.0, 10),
    (None, 5.0, 10),
])
def test_compute_reimbursement_blocked(distance, price, consumption):
    assert compute_reimbursement(distance, price, consumption) is None


def test_new_entry_total_is_computed():
    entry = make_entry()
    assert entry.total_value == 50.0


def test_editing_calculation_fields_recomputes():
    entry = make_entry()
    assert update_fuel_entry(entry, distance_km=200.0).total_value == 100.0
    assert update_fuel_entry(entry, price_per_liter=6.0).total_value == 60.0
    assert update_fuel_entry(entry, consumption=12.5).total_value == 40.0


def test_zero_consumption_keeps_prior_total():
    entry = make_entry()
    updated = update_fuel_entry(entry, consumption=0.0)
    assert updated.consumption == 0.0
    assert updated.total_value == 50.0


def test_total_value_is_not_editable():
    with pytest.raises(ValueError):
        update_fuel_entry(make_entry(), total_value=999.0)


def test_other_edits_leave_total_alone():
    updated = update_fuel_entry(make_entry(), operation="Obra Norte", road_type="Estrada")
    assert updated.total_value == 50.0
    assert updated.road_type.value == "Estrada"


def test_reconcile_warns_when_invoice_is_lower():
    assert reconcile(make_entry(receipt_amount=40.0)) is not None
    assert reconcile(make_entry(receipt_amount=60.0)) is None
    assert reconcile(make_entry()) is None
