"""
Mapping between transactions and their external shapes.

- the app shape: camelCase dictionaries (``distanceKm``, ``receiptImage``),
  used for JSON files and the command line;
- the row shape: one flat snake_case table where receipt and fuel columns
  coexist and are nullable.

Fields that are unset are left out of rows instead of being sent as nulls,
so that partial updates never clobber existing columns.
"""

from enum import Enum
from typing import Any, Dict, Optional

from .models import (CarType, Expense, FuelEntry, FuelType, RoadType, Transaction, RECEIPT, FUEL,
                     coerce_category, coerce_enum)


class _Unset:
    def __repr__(self):
        return "UNSET"


# Marks "not provided" in update requests, distinct from an explicit value
UNSET = _Unset()

ROW_COLUMNS = [
    "id", "created_at", "user_id", "date", "city", "amount", "category",
    "operation", "notes", "type", "receipt_image", "receipt_amount", "origin",
    "destination", "car_type", "road_type", "distance_km", "fuel_type",
    "price_per_liter", "consumption", "total_value",
]

RECEIPT_FIELDS = ["id", "date", "city", "amount", "category", "operation", "notes",
                  "receipt_image", "receipt_amount"]
FUEL_FIELDS = ["id", "date", "origin", "destination", "car_type", "road_type",
               "distance_km", "operation", "fuel_type", "price_per_liter",
               "consumption", "total_value", "receipt_amount", "receipt_image"]
NUMERIC_FIELDS = {"amount", "receipt_amount", "distance_km", "price_per_liter",
                  "consumption", "total_value"}
ENUM_FIELDS = {"car_type": CarType, "road_type": RoadType, "fuel_type": FuelType}

# snake_case attribute -> camelCase app key, where they differ
APP_KEYS = {
    "receipt_image": "receiptImage",
    "receipt_amount": "receiptAmount",
    "car_type": "carType",
    "road_type": "roadType",
    "distance_km": "distanceKm",
    "fuel_type": "fuelType",
    "price_per_liter": "pricePerLiter",
    "total_value": "totalValue",
}
ATTR_NAMES = {v: k for k, v in APP_KEYS.items()}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _fields_for(tx: Transaction):
    if isinstance(tx, Expense):
        return RECEIPT_FIELDS
    if isinstance(tx, FuelEntry):
        return FUEL_FIELDS
    raise TypeError(f"Not a transaction: {tx!r}")


def to_row(tx: Transaction, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Flatten a transaction into a table row, omitting unset columns."""
    row = {"type": tx.type}
    for name in _fields_for(tx):
        value = getattr(tx, name)
        if value is not None:
            row[name] = _plain(value)
    if isinstance(tx, FuelEntry):
        # reports and totals read ``amount`` for every row
        row["amount"] = tx.total_value
    if user_id is not None:
        row["user_id"] = user_id
    return row


def from_row(row: Dict[str, Any]) -> Transaction:
    """Rebuild a transaction from a table row."""
    kind = row.get("type")
    if kind == RECEIPT:
        names, cls = RECEIPT_FIELDS, Expense
    elif kind == FUEL:
        names, cls = FUEL_FIELDS, FuelEntry
    else:
        raise ValueError(f"Unknown transaction type in row {row.get('id')!r}: {kind!r}")

    kwargs = {}
    for name in names:
        value = row.get(name)
        if value is None:
            continue
        if name in NUMERIC_FIELDS:
            value = float(value)
        elif name == "id":
            value = str(value)
        elif name == "date":
            value = str(value)[:10]
        kwargs[name] = value
    # columns are nullable; older or hand-edited rows may lack required fields
    kwargs.setdefault("date", "")
    if cls is Expense:
        kwargs.setdefault("amount", 0.0)
    else:
        for name in ("origin", "destination"):
            kwargs.setdefault(name, "")
        for name in ("distance_km", "price_per_liter"):
            kwargs.setdefault(name, 0.0)
        for name, enum_cls in ENUM_FIELDS.items():
            if name in kwargs:
                kwargs[name] = coerce_enum(enum_cls, kwargs[name],
                                           default=FuelEntry.__dataclass_fields__[name].default)
    return cls(**kwargs)


def to_update(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the column set for a partial update.

    Keys may be attribute names or app (camelCase) keys. ``None`` and
    ``UNSET`` values are dropped so the matching columns stay untouched.
    """
    update = {}
    for key, value in changes.items():
        name = ATTR_NAMES.get(key, key)
        if name not in ROW_COLUMNS or name in ("id", "user_id", "created_at", "type"):
            raise ValueError(f"Field cannot be updated: {key}")
        if value is None or value is UNSET:
            continue
        if name == "category":
            value = coerce_category(value)
        elif name in ENUM_FIELDS:
            value = coerce_enum(ENUM_FIELDS[name], value)
        update[name] = _plain(value)
    return update


def to_app_dict(tx: Transaction) -> Dict[str, Any]:
    """Convert a transaction to the camelCase app shape."""
    data = {"type": tx.type}
    for name in _fields_for(tx):
        value = getattr(tx, name)
        if value is not None:
            data[APP_KEYS.get(name, name)] = _plain(value)
    return data


def from_app_dict(data: Dict[str, Any]) -> Transaction:
    """Build a transaction from the camelCase app shape."""
    row = {ATTR_NAMES.get(k, k): v for k, v in data.items()}
    return from_row(row)
