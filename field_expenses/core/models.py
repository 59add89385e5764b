"""
Data models for field expense transactions.

Two transaction shapes share one store: receipt expenses and fuel entries.
They are told apart by their ``type`` discriminator ("receipt" / "fuel").
"""

import uuid
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Dict, Optional, Union


class ExpenseCategory(str, Enum):
    """Expense categories offered to the user."""
    TRANSPORTE_APP = "Ônibus/ Uber"
    PEDAGIO = "Pedágio"
    ESTACIONAMENTO = "Estacionamento"
    SUPERMERCADO = "Supermercado"
    MATERIAL_ESCRITORIO = "Material Escritório"
    COPIADORA = "Copiadora"
    HOSPEDAGEM = "Hospedagem"
    LAVANDERIA = "Lavanderia/ Faxina"
    UTILIDADES = "Contas Luz/Gás/Água"
    MANUTENCAO_GERAL = "Manutenção"
    CARRO = "Carro"
    CORREIO = "Correio"
    REFEICAO = "Refeição"
    TAXAS = "Taxas"
    MANUTENCAO_ESCRITORIO = "Manutenção Escritório"
    OUTROS = "Outros"


class CarType(str, Enum):
    PROPRIO = "Proprio"
    ALUGADO = "Alugado"


class RoadType(str, Enum):
    CIDADE = "Cidade"
    ESTRADA = "Estrada"


class FuelType(str, Enum):
    GASOLINA = "Gasolina"
    ALCOOL = "Alcool"
    DIESEL = "Diesel"


RECEIPT = "receipt"
FUEL = "fuel"

# Bulk-imported records carry this until the user picks a cost center
PENDING_OPERATION = "PENDING — ASSIGN"

DEFAULT_OPERATION = "Geral"


def new_transaction_id() -> str:
    """Return a fresh opaque id for a client-side transaction."""
    return uuid.uuid4().hex


def coerce_enum(enum_cls, value, default=None):
    """
    Match ``value`` against an enum's values or names, ignoring case.

    Unknown values return ``default`` when one is given and raise
    ``ValueError`` otherwise.
    """
    if isinstance(value, enum_cls):
        return value
    text = str(value if value is not None else "").strip().lower()
    for member in enum_cls:
        if text in (member.value.lower(), member.name.lower()):
            return member
    if default is not None:
        return default
    raise ValueError(f"{value!r} is not a valid {enum_cls.__name__}")


def coerce_category(value: Optional[str]) -> Union[ExpenseCategory, str]:
    """Map a category string onto the enum, keeping unknown labels as free text."""
    if isinstance(value, ExpenseCategory):
        return value
    value = (value or "").strip()
    for cat in ExpenseCategory:
        if cat.value.lower() == value.lower():
            return cat
    return value or ExpenseCategory.OUTROS


@dataclass
class Expense:
    """A receipt expense."""
    date: str
    amount: float
    category: Union[ExpenseCategory, str] = ExpenseCategory.OUTROS
    city: str = ""
    operation: str = DEFAULT_OPERATION
    notes: str = ""
    receipt_image: Optional[str] = None
    receipt_amount: Optional[float] = None
    id: str = field(default_factory=new_transaction_id)
    type: str = field(default=RECEIPT, init=False)

    def __post_init__(self):
        self.category = coerce_category(self.category)

    @property
    def value(self) -> float:
        """Amount this record contributes to reimbursement totals."""
        return self.amount

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class FuelEntry:
    """A trip reimbursed by distance, fuel price and car consumption."""
    date: str
    origin: str
    destination: str
    distance_km: float
    price_per_liter: float
    consumption: float = 10.0
    car_type: CarType = CarType.PROPRIO
    road_type: RoadType = RoadType.CIDADE
    fuel_type: FuelType = FuelType.GASOLINA
    operation: str = DEFAULT_OPERATION
    total_value: float = 0.0
    receipt_amount: Optional[float] = None
    receipt_image: Optional[str] = None
    id: str = field(default_factory=new_transaction_id)
    type: str = field(default=FUEL, init=False)

    def __post_init__(self):
        self.car_type = coerce_enum(CarType, self.car_type)
        self.road_type = coerce_enum(RoadType, self.road_type)
        self.fuel_type = coerce_enum(FuelType, self.fuel_type)

    @property
    def value(self) -> float:
        return self.total_value

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


Transaction = Union[Expense, FuelEntry]
