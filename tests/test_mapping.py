import pytest

from field_expenses.core.mapping import (UNSET, from_app_dict, from_row, to_app_dict, to_row,
                                         to_update)
from field_expenses.core.models import CarType, Expense, ExpenseCategory, FuelEntry, FuelType, RoadType
from field_expenses.core.validators import validate_transaction


def test_expense_row_round_trip():
    tx = Expense(date="2024-01-10", amount=25.0, category="Pedágio", city="Jundiaí",
                 operation="Obra Centro", notes="x", receipt_amount=25.0)
    row = to_row(tx, "user-1")

    assert row["type"] == "receipt"
    assert row["user_id"] == "user-1"
    assert row["category"] == "Pedágio"
    assert "receipt_image" not in row
    assert "origin" not in row
    assert from_row(row) == tx


def test_fuel_row_mirrors_total_in_amount():
    tx = FuelEntry(date="2024-01-10", origin="A", destination="B", distance_km=100.0,
                   price_per_liter=5.0, total_value=50.0, road_type="Estrada")
    row = to_row(tx)

    assert row["amount"] == 50.0
    assert row["road_type"] == "Estrada"
    assert row["distance_km"] == 100.0
    back = from_row({**row, "created_at": "2024-01-10T10:00:00", "user_id": "u"})
    assert back == tx
    assert back.road_type is RoadType.ESTRADA


def test_app_dict_uses_camel_case():
    tx = FuelEntry(date="2024-01-10", origin="A", destination="B", distance_km=10.0,
                   price_per_liter=6.0, total_value=6.0, receipt_amount=7.0)
    data = to_app_dict(tx)
    assert data["distanceKm"] == 10.0
    assert data["receiptAmount"] == 7.0
    assert "receipt_amount" not in data
    assert from_app_dict(data) == tx


def test_partial_update_omits_unset_fields():
    update = to_update({"notes": "nova obs", "city": None, "amount": UNSET,
                        "distanceKm": 80, "category": "outros"})
    assert update == {"notes": "nova obs", "distance_km": 80, "category": "Outros"}


@pytest.mark.parametrize("key", ["id", "user_id", "type", "created_at", "colour"])
def test_protected_or_unknown_fields_are_rejected(key):
    with pytest.raises(ValueError):
        to_update({key: "x"})


def test_unknown_type_is_rejected():
    with pytest.raises(ValueError):
        from_row({"id": "1", "type": "refund"})


def test_ids_are_unique():
    assert Expense(date="2024-01-01", amount=1.0).id != Expense(date="2024-01-01", amount=1.0).id


def test_category_coercion():
    assert Expense(date="2024-01-01", amount=1.0, category="ESTACIONAMENTO").category \
        is ExpenseCategory.ESTACIONAMENTO
    assert Expense(date="2024-01-01", amount=1.0, category="Brindes").category == "Brindes"
    assert Expense(date="2024-01-01", amount=1.0, category="").category is ExpenseCategory.OUTROS


def test_validation_rules():
    ok, _ = validate_transaction(Expense(date="2024-01-01", amount=9.9), "user-1")
    assert ok

    ok, errors = validate_transaction(Expense(date="", amount=float("nan")), "")
    assert not ok
    assert len(errors) == 3

    ok, _ = validate_transaction(Expense(date="2024-01-01", amount=0.0), "user-1")
    assert ok
    ok, _ = validate_transaction(Expense(date="2024-01-01", amount=-3.5), "user-1")
    assert ok

    fuel = FuelEntry(date="2024-01-01", origin="A", destination="B", distance_km=10.0,
                     price_per_liter=5.0, consumption=0.0)
    ok, errors = validate_transaction(fuel, "user-1")
    assert not ok
    assert "consumption" in errors[0]


@pytest.mark.parametrize("date", ["2024-1-5", "2024-13-45", "tomorrow", "05/01/2024"])
def test_dates_must_be_real_iso_dates(date):
    ok, errors = validate_transaction(Expense(date=date, amount=1.0), "user-1")
    assert not ok
    assert "YYYY-MM-DD" in errors[0]


def test_fuel_row_with_null_columns_gets_defaults():
    tx = from_row({"id": "7", "type": "fuel", "date": "2024-01-10", "origin": None,
                   "destination": None, "distance_km": None, "price_per_liter": None,
                   "car_type": "proprio", "road_type": "ESTRADA", "fuel_type": "querosene",
                   "amount": 12.0, "total_value": 12.0})

    assert isinstance(tx, FuelEntry)
    assert tx.origin == "" and tx.destination == ""
    assert tx.distance_km == 0.0 and tx.price_per_liter == 0.0
    assert tx.car_type is CarType.PROPRIO
    assert tx.road_type is RoadType.ESTRADA
    assert tx.fuel_type is FuelType.GASOLINA
    assert tx.total_value == 12.0


def test_enum_fields_are_matched_ignoring_case():
    assert FuelEntry(date="2024-01-10", origin="A", destination="B", distance_km=1.0,
                     price_per_liter=1.0, car_type="alugado").car_type is CarType.ALUGADO
    assert to_update({"fuelType": "diesel"}) == {"fuel_type": "Diesel"}
    with pytest.raises(ValueError):
        to_update({"carType": "bicicleta"})
