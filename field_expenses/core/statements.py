"""
Toll/parking statement import.

Two statement inputs are supported:

- the semicolon-delimited CSV exported by toll tag operators (Latin-1,
  ``DD/MM/YYYY`` dates, comma decimals), parsed locally;
- a PDF statement, sent whole to the extraction provider.

Both produce draft ``Expense`` records that carry ``PENDING_OPERATION``.
A JSON list of app-shaped transactions (as printed by ``list --json``) can
be imported the same way; its records keep their own operation.
Nothing is persisted here; the caller previews the drafts and confirms.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .categorization import categorize_statement_line
from .fuel import recompute_total
from .mapping import from_app_dict
from .models import Expense, ExpenseCategory, FuelEntry, Transaction, PENDING_OPERATION
from .parsers import parse_date
from .utils import br_date_to_iso, normalize_iso_date, parse_br_amount, to_data_uri
from . import llm

STATEMENT_ENCODING = "latin-1"

# Header substrings identifying each column
DATE_COLUMN = "Data de Utilizacao"
AMOUNT_COLUMN = "Valor Cobrado"
NAME_COLUMN = "Nome do Estabelecimento"
ADDRESS_COLUMN = "Endereco do Estabelecimento"
TYPE_COLUMN = "Tipo de Transacao"

NO_VALID_ROWS_MESSAGE = "No valid entries found in the file"


class StatementFormatError(ValueError):
    """The statement layout is not recognised; nothing was imported."""

    def __init__(self, message: str, missing_columns: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_columns = missing_columns or []


@dataclass
class StatementImport:
    """Result of parsing a statement, shown to the user before anything is saved."""
    drafts: List[Transaction] = field(default_factory=list)
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(d.value for d in self.drafts), 2)

    def summary(self) -> str:
        s = f"{len(self.drafts)} entr{'y' if len(self.drafts) == 1 else 'ies'} ready"
        if self.skipped:
            s += f", {self.skipped} skipped"
        return s


def _find_column(headers: List[str], needle: str) -> int:
    for idx, h in enumerate(headers):
        if needle in h:
            return idx
    return -1


def _cell(cols: List[str], idx: int) -> str:
    if idx < 0 or idx >= len(cols):
        return ""
    return cols[idx].strip()


def parse_toll_csv(text: str, rules: Optional[Dict] = None,
                   with_placeholders: bool = False) -> StatementImport:
    """
    Parse a toll/parking operator CSV export into draft expenses.

    Args:
        text: Decoded file content; the first line is the header row
        rules: Categorization rules (see ``categorization``)
        with_placeholders: Attach a generated PDF stating date, place and
            amount to every draft, so exports have a document per line

    Raises:
        StatementFormatError: the date or amount column is missing
    """
    lines = text.splitlines()
    headers = [h.strip() for h in lines[0].split(";")] if lines else []

    idx_date = _find_column(headers, DATE_COLUMN)
    idx_value = _find_column(headers, AMOUNT_COLUMN)
    idx_name = _find_column(headers, NAME_COLUMN)
    idx_addr = _find_column(headers, ADDRESS_COLUMN)
    idx_type = _find_column(headers, TYPE_COLUMN)

    missing = [c for c, i in ((DATE_COLUMN, idx_date), (AMOUNT_COLUMN, idx_value)) if i == -1]
    if missing:
        raise StatementFormatError(
            f"Invalid file format. The columns '{DATE_COLUMN}' and '{AMOUNT_COLUMN}' are required.",
            missing_columns=missing,
        )

    result = StatementImport()
    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue

        cols = line.split(";")
        raw_date = _cell(cols, idx_date)
        raw_value = _cell(cols, idx_value)
        place_name = _cell(cols, idx_name)
        place_addr = _cell(cols, idx_addr)
        kind = _cell(cols, idx_type)

        if not raw_date or not raw_value:
            result.skipped += 1
            continue

        date = br_date_to_iso(raw_date)
        amount = parse_br_amount(raw_value)
        if date is None or amount is None:
            result.skipped += 1
            continue

        category, _ = categorize_statement_line(kind, place_name, rules)
        city = " - ".join(p for p in (place_name, place_addr) if p).replace('"', "").replace("'", "")

        draft = Expense(
            date=date,
            amount=amount,
            category=category,
            city=city,
            operation=PENDING_OPERATION,
            notes=f"Importado via CSV ({kind})",
        )
        if with_placeholders:
            draft.receipt_image = placeholder_for(draft)
        result.drafts.append(draft)

    if not result.drafts:
        result.warnings.append(NO_VALID_ROWS_MESSAGE)
    if result.skipped:
        result.warnings.append(f"{result.skipped} line(s) could not be read and were skipped")
    return result


def read_toll_csv(path: Path, **kwargs) -> StatementImport:
    """Read and parse a CSV statement file (Latin-1, as exported by Brazilian operators)."""
    return parse_toll_csv(path.read_text(encoding=STATEMENT_ENCODING), **kwargs)


def parse_pdf_statement(pdf: bytes, extractor: "llm.ReceiptExtractor",
                        with_placeholders: bool = False) -> StatementImport:
    """
    Import a PDF statement through the extraction provider.

    An answer without a usable JSON array yields an empty batch with an
    explicit warning rather than a partial result.
    """
    entries = extractor.extract_statement(pdf)
    result = StatementImport()
    if not entries:
        result.warnings.append(llm.NO_TRANSACTIONS_MESSAGE)
        return result

    for entry in entries:
        amount = parse_br_amount(entry.get("amount"))
        date = parse_date(str(entry.get("date") or ""))
        if amount is None or date is None:
            result.skipped += 1
            continue
        draft = Expense(
            date=date,
            amount=amount,
            category=entry.get("category") or ExpenseCategory.TAXAS.value,
            city=str(entry.get("city") or "").strip(),
            operation=PENDING_OPERATION,
            notes="Importado via PDF",
        )
        if with_placeholders:
            draft.receipt_image = placeholder_for(draft)
        result.drafts.append(draft)

    if not result.drafts:
        result.warnings.append(llm.NO_TRANSACTIONS_MESSAGE)
    if result.skipped:
        result.warnings.append(f"{result.skipped} entr(ies) without a valid date or amount were skipped")
    return result


def parse_transactions_json(text: str) -> StatementImport:
    """
    Parse a JSON list of app-shaped transactions into drafts.

    Ids are dropped so that every draft is inserted as a new record, and
    fuel totals are recomputed. Entries that cannot be read are skipped.

    Raises:
        StatementFormatError: the content is not a JSON list
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StatementFormatError(f"Invalid JSON file: {e}") from e
    if not isinstance(data, list):
        raise StatementFormatError("Invalid JSON file: expected a list of transactions")

    result = StatementImport()
    for entry in data:
        if not isinstance(entry, dict):
            result.skipped += 1
            continue
        try:
            tx = from_app_dict({k: v for k, v in entry.items() if k != "id"})
        except (TypeError, ValueError) as e:
            print(f"[WARN] Skipping entry: {e}")
            result.skipped += 1
            continue
        if normalize_iso_date(tx.date) != tx.date:
            print(f"[WARN] Skipping entry with invalid date: {tx.date!r}")
            result.skipped += 1
            continue
        if isinstance(tx, FuelEntry):
            tx = recompute_total(tx)
        result.drafts.append(tx)

    if not result.drafts:
        result.warnings.append(NO_VALID_ROWS_MESSAGE)
    if result.skipped:
        result.warnings.append(f"{result.skipped} entr(ies) could not be read and were skipped")
    return result


def read_transactions_json(path: Path) -> StatementImport:
    return parse_transactions_json(path.read_text(encoding="utf-8"))


def placeholder_for(draft: Expense) -> str:
    from .reporting import build_placeholder_receipt

    pdf = build_placeholder_receipt(draft.date, draft.city, draft.amount)
    return to_data_uri(pdf, "application/pdf")
