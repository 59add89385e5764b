"""
Expense workflow orchestration: capture, import, edit and export.
"""

import datetime as dt
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .fuel import CALCULATION_FIELDS, compute_reimbursement, recompute_total, update_fuel_entry
from .llm import ExtractionAuthError, ExtractionError, ReceiptExtractor, NO_TRANSACTIONS_MESSAGE
from .mapping import ATTR_NAMES, FUEL_FIELDS, UNSET, to_update
from .models import (Expense, FuelEntry, Transaction, DEFAULT_OPERATION,
                     PENDING_OPERATION)
from .ocr import compress_image
from .reporting import build_claim_package, build_receipts_zip, build_summary_pdf, totals, write_csv, write_xlsx
from .database import TransactionStore
from .statements import StatementImport, parse_pdf_statement, read_toll_csv, read_transactions_json
from .utils import (IMAGE_EXTS, PDF_EXTS, JSON_EXTS, media_type_for, money_fmt,
                    normalize_iso_date, to_data_uri, today_iso)
from .validators import ValidationError

MANUAL_FILL_WARNING = "Could not read the receipt automatically; fill in the fields manually"


@dataclass
class ScanResult:
    """A receipt draft plus anything the user should double check."""
    draft: Expense
    warnings: List[str] = field(default_factory=list)
    partial: bool = False


class ExpenseTracker:
    """Owner-scoped expense workflow on top of a store and an extractor."""

    def __init__(self, store: TransactionStore, extractor: Optional[ReceiptExtractor],
                 user_id: str, operations: Optional[List[str]] = None,
                 rules: Optional[Dict] = None, verbose: bool = False):
        """
        Initialize the tracker.

        Args:
            store: Transaction store (local or remote)
            extractor: Receipt extractor; None means manual entry only
            user_id: Owner of every record read or written
            operations: Active operations (cost centers) known locally
            rules: Statement categorization rules (defaults built in)
            verbose: Print debugging output
        """
        if not user_id:
            raise ValueError("A user id is required")
        self.store = store
        self.extractor = extractor
        self.user_id = user_id
        self.operations = sorted(set(operations or []))
        self.rules = rules
        self.verbose = verbose

    # -- capture -----------------------------------------------------------

    def check_operation(self, operation: str) -> Optional[str]:
        """Warn about an operation missing from the synced list."""
        if operation in (PENDING_OPERATION, DEFAULT_OPERATION) or not self.operations:
            return None
        if operation not in self.operations:
            return f"Operation '{operation}' is not in the active operations list"
        return None

    def scan_receipt(self, path: Path, operation: str = DEFAULT_OPERATION) -> ScanResult:
        """
        Build a draft expense from a receipt photo or document.

        Images are compressed before upload. Extraction failures other than
        rejected credentials leave a blank draft for manual entry.

        Raises:
            ExtractionAuthError: the provider rejected the API key
        """
        print(f"[INFO] Reading {path.name}")
        data = path.read_bytes()
        media_type = media_type_for(path)
        warnings = []

        if path.suffix.lower() in IMAGE_EXTS:
            try:
                data = compress_image(data)
                media_type = "image/jpeg"
            except ValueError as e:
                warnings.append(f"Image could not be compressed, sending original: {e}")

        extraction = None
        if self.extractor is None:
            warnings.append(MANUAL_FILL_WARNING)
        else:
            try:
                extraction = self.extractor.extract(data, media_type)
            except ExtractionAuthError:
                raise
            except ExtractionError as e:
                print(f"[WARN] {e}")
                warnings.append(MANUAL_FILL_WARNING)

        if extraction is None:
            draft = Expense(date=today_iso(), amount=0.0, operation=operation)
            partial = True
        else:
            draft = Expense(
                date=extraction.date,
                amount=extraction.amount,
                category=extraction.category,
                city=extraction.city,
                operation=operation,
                notes=extraction.notes,
                receipt_amount=extraction.amount,
            )
            partial = extraction.partial
            if partial:
                warnings.append("Partial read: confirm date and amount")
            if self.verbose:
                print(f"  [DEBUG] Extraction: {extraction.to_dict()}")

        draft.receipt_image = to_data_uri(data, media_type)
        op_warning = self.check_operation(operation)
        if op_warning:
            warnings.append(op_warning)
        return ScanResult(draft=draft, warnings=warnings, partial=partial)

    def new_fuel_entry(self, date: str, origin: str, destination: str,
                       distance_km: float, price_per_liter: float,
                       consumption: float = 10.0, operation: str = DEFAULT_OPERATION,
                       receipt_amount: Optional[float] = None,
                       receipt_path: Optional[Path] = None, **kwargs) -> FuelEntry:
        """Create a fuel entry with its reimbursement computed."""
        entry = FuelEntry(date=date, origin=origin, destination=destination,
                          distance_km=distance_km, price_per_liter=price_per_liter,
                          consumption=consumption, operation=operation,
                          receipt_amount=receipt_amount, **kwargs)
        if compute_reimbursement(distance_km, price_per_liter, consumption) is None:
            print("[WARN] Reimbursement not computed: distance, price and consumption must be "
                  "valid numbers and consumption must be greater than 0")
        entry = recompute_total(entry)
        if receipt_path is not None:
            data = receipt_path.read_bytes()
            media_type = media_type_for(receipt_path)
            if receipt_path.suffix.lower() in IMAGE_EXTS:
                data = compress_image(data)
                media_type = "image/jpeg"
            entry.receipt_image = to_data_uri(data, media_type)
        return entry

    # -- statements --------------------------------------------------------

    def preview_statement(self, path: Path, with_placeholders: bool = False) -> StatementImport:
        """
        Parse a statement file into drafts without saving anything.

        PDF statements go through the extractor, JSON files are read as a
        list of app-shaped transactions (the output of ``list --json``) and
        anything else is read as the operator CSV export.
        """
        if path.suffix.lower() in JSON_EXTS:
            return read_transactions_json(path)
        if path.suffix.lower() in PDF_EXTS:
            if self.extractor is None:
                raise ExtractionError("PDF statements need an extraction provider")
            try:
                return parse_pdf_statement(path.read_bytes(), self.extractor,
                                           with_placeholders=with_placeholders)
            except ExtractionAuthError:
                raise
            except ExtractionError as e:
                print(f"[WARN] {e}")
                result = StatementImport()
                result.warnings.append(NO_TRANSACTIONS_MESSAGE)
                return result
        return read_toll_csv(path, rules=self.rules, with_placeholders=with_placeholders)

    def confirm_import(self, drafts: List[Transaction], operation: Optional[str] = None) -> List[Transaction]:
        """Persist previewed drafts in one batched insert."""
        if operation:
            drafts = [replace(d, operation=operation) for d in drafts]
        if not drafts:
            return []
        saved = self.store.add_many(drafts, self.user_id)
        print(f"[OK] Imported {len(saved)} entr{'y' if len(saved) == 1 else 'ies'} "
              f"({money_fmt(totals(saved))})")
        return saved

    # -- CRUD --------------------------------------------------------------

    def save_receipt(self, draft: Expense) -> Expense:
        """Save a scanned receipt; a zero amount means the receipt was never filled in."""
        if not draft.amount:
            raise ValidationError(["Amount is required"])
        return self.save(draft)

    def save(self, tx: Transaction) -> Transaction:
        if isinstance(tx, FuelEntry):
            tx = recompute_total(tx)
        return self.store.add(tx, self.user_id)

    def list(self) -> List[Transaction]:
        return self.store.list(self.user_id)

    def find(self, tx_id: str) -> Optional[Transaction]:
        for tx in self.list():
            if tx.id == tx_id:
                return tx
        return None

    def pending(self) -> List[Transaction]:
        """Imported entries still waiting for an operation."""
        return [t for t in self.list() if t.operation == PENDING_OPERATION]

    def update(self, tx_id: str, changes: Dict[str, Any]) -> Optional[Transaction]:
        """
        Apply a partial edit. Fuel entries get their total recomputed when
        distance, price or consumption change.

        Returns None when ``tx_id`` is not one of the user's transactions.
        """
        to_update(changes)  # reject unknown or protected fields up front
        supplied = {ATTR_NAMES.get(k, k): v for k, v in changes.items()
                    if v is not None and v is not UNSET}
        if "date" in supplied and normalize_iso_date(supplied["date"]) != supplied["date"]:
            raise ValidationError([f"Date must be a valid YYYY-MM-DD date, got: {supplied['date']}"])

        existing = self.find(tx_id)
        if existing is None:
            return None

        if isinstance(existing, FuelEntry):
            if "total_value" in supplied or "amount" in supplied:
                raise ValueError("total_value and amount are computed from distance, price and consumption")
            fuel_changes = {k: v for k, v in supplied.items() if k in FUEL_FIELDS}
            updated = update_fuel_entry(existing, **fuel_changes)
            if any(k in supplied for k in CALCULATION_FIELDS):
                supplied["total_value"] = updated.total_value
                supplied["amount"] = updated.total_value

        return self.store.update(tx_id, supplied, self.user_id)

    def delete(self, tx_id: str) -> bool:
        """Permanently delete one of the user's transactions."""
        return self.store.delete(tx_id, self.user_id)

    # -- export ------------------------------------------------------------

    def export(self, out_dir: Path, transactions: Optional[List[Transaction]] = None) -> Dict[str, Optional[Path]]:
        """
        Write spreadsheet, CSV, summary PDF, receipts ZIP and the merged claim
        package PDF to ``out_dir``.

        Returns the written paths; ``zip`` and ``package`` are None when no
        receipts are attached.
        """
        transactions = self.list() if transactions is None else transactions
        out_dir.mkdir(parents=True, exist_ok=True)
        stamp = dt.date.today().isoformat()

        paths = {
            "xlsx": out_dir / f"relatorio_{stamp}.xlsx",
            "csv": out_dir / f"relatorio_{stamp}.csv",
            "pdf": out_dir / f"resumo_{stamp}.pdf",
            "zip": out_dir / f"comprovantes_{stamp}.zip",
            "package": out_dir / f"pacote_{stamp}.pdf",
        }

        write_xlsx(transactions, paths["xlsx"])
        print(f"[OK] Wrote {paths['xlsx']}")
        write_csv(transactions, paths["csv"])
        print(f"[OK] Wrote {paths['csv']}")
        build_summary_pdf(transactions, paths["pdf"], owner=self.user_id)
        print(f"[OK] Wrote {paths['pdf']}")

        count = build_receipts_zip(transactions, paths["zip"])
        if count:
            print(f"[OK] Wrote {paths['zip']} ({count} receipt(s))")
            included = build_claim_package(paths["pdf"], transactions, paths["package"])
            print(f"[OK] Wrote {paths['package']} (summary + {included} receipt(s))")
        else:
            print("[INFO] No receipts attached; ZIP and claim package not created")
            paths["zip"] = None
            paths["package"] = None

        print(f"[OK] Export complete: {len(transactions)} transaction(s), "
              f"total {money_fmt(totals(transactions))}")
        return paths
