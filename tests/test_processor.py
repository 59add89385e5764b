import json

import pytest
from pypdf import PdfReader

from field_expenses.core.llm import ExtractionAuthError, ExtractionError, NO_TRANSACTIONS_MESSAGE
from field_expenses.core.mapping import to_app_dict
from field_expenses.core.models import Expense, ExpenseCategory, FuelEntry, PENDING_OPERATION
from field_expenses.core.processor import MANUAL_FILL_WARNING, ExpenseTracker
from field_expenses.core.utils import today_iso
from field_expenses.core.validators import ValidationError

from conftest import CSV_HEADER, FakeExtractor


def test_scan_receipt_builds_draft_with_compressed_image(tracker, tmp_path, png_bytes):
    path = tmp_path / "nota.png"
    path.write_bytes(png_bytes)

    result = tracker.scan_receipt(path, operation="Obra Centro")

    draft = result.draft
    assert draft.amount == 42.9
    assert draft.receipt_amount == 42.9
    assert draft.category == ExpenseCategory.REFEICAO
    assert draft.operation == "Obra Centro"
    assert draft.receipt_image.startswith("data:image/jpeg;base64,")
    assert result.warnings == []
    assert tracker.extractor.calls[0][1] == "image/jpeg"


def test_scan_receipt_degrades_to_manual_entry(store, tmp_path):
    path = tmp_path / "nota.pdf"
    path.write_bytes(b"%PDF-1.4 receipt")
    tracker = ExpenseTracker(store, FakeExtractor(error=ExtractionError("timeout")), "user-1")

    result = tracker.scan_receipt(path)

    assert MANUAL_FILL_WARNING in result.warnings
    assert result.partial
    assert result.draft.date == today_iso()
    assert result.draft.amount == 0.0
    assert result.draft.receipt_image.startswith("data:application/pdf;base64,")
    with pytest.raises(ValidationError):
        tracker.save_receipt(result.draft)


def test_scan_receipt_auth_error_is_raised(store, tmp_path):
    path = tmp_path / "nota.pdf"
    path.write_bytes(b"%PDF-1.4")
    tracker = ExpenseTracker(store, FakeExtractor(error=ExtractionAuthError("bad key")), "user-1")
    with pytest.raises(ExtractionAuthError):
        tracker.scan_receipt(path)


def test_unknown_operation_is_flagged(tracker, tmp_path):
    path = tmp_path / "nota.pdf"
    path.write_bytes(b"%PDF-1.4")
    result = tracker.scan_receipt(path, operation="Obra Sul")
    assert any("Obra Sul" in w for w in result.warnings)


def test_fuel_entry_save_and_recompute_on_edit(tracker):
    entry = tracker.new_fuel_entry(date="2024-03-01", origin="Campinas", destination="Sorocaba",
                                   distance_km=100.0, price_per_liter=5.0, operation="Obra Norte")
    assert entry.consumption == 10.0
    assert entry.total_value == 50.0
    saved = tracker.save(entry)

    updated = tracker.update(saved.id, {"distanceKm": 200.0})
    assert isinstance(updated, FuelEntry)
    assert updated.total_value == 100.0
    assert updated.origin == "Campinas"
    assert updated.operation == "Obra Norte"

    updated = tracker.update(saved.id, {"consumption": 0.0})
    assert updated.total_value == 100.0

    with pytest.raises(ValueError):
        tracker.update(saved.id, {"totalValue": 1.0})
    with pytest.raises(ValueError):
        tracker.update(saved.id, {"amount": 5.0})
    assert tracker.find(saved.id).total_value == 100.0


def test_update_and_delete_unknown_id(tracker):
    assert tracker.update("missing", {"notes": "x"}) is None
    assert tracker.delete("missing") is False


def test_statement_preview_then_confirm(tracker, tmp_path):
    path = tmp_path / "extrato.csv"
    path.write_bytes((CSV_HEADER + "\n25/12/2023;Shopping ABC;Rua X;15,50;Pedágio\n"
                      "26/12/2023;Estapar;Rua Y;8,00;Estacionamento\n").encode("latin-1"))

    preview = tracker.preview_statement(path)
    assert len(preview.drafts) == 2
    assert tracker.list() == []

    saved = tracker.confirm_import(preview.drafts)
    assert len(saved) == 2
    assert len(tracker.pending()) == 2
    assert {t.operation for t in tracker.list()} == {PENDING_OPERATION}

    tracker.update(saved[0].id, {"operation": "Obra Centro"})
    assert len(tracker.pending()) == 1


def test_confirm_import_can_assign_operation(tracker, tmp_path):
    path = tmp_path / "extrato.csv"
    path.write_text(CSV_HEADER + "\n25/12/2023;CCR;Rod. X;15,50;\n", encoding="latin-1")
    preview = tracker.preview_statement(path)

    saved = tracker.confirm_import(preview.drafts, operation="Obra Norte")
    assert [t.operation for t in saved] == ["Obra Norte"]
    assert preview.drafts[0].operation == PENDING_OPERATION
    assert tracker.confirm_import([]) == []


def test_pdf_statement_extraction_failure_warns(store, tmp_path):
    path = tmp_path / "extrato.pdf"
    path.write_bytes(b"%PDF-1.4")
    tracker = ExpenseTracker(store, FakeExtractor(error=ExtractionError("boom")), "user-1")
    result = tracker.preview_statement(path)
    assert result.drafts == []
    assert result.warnings == [NO_TRANSACTIONS_MESSAGE]


def test_export_writes_reports(tracker, tmp_path, png_bytes):
    path = tmp_path / "nota.png"
    path.write_bytes(png_bytes)
    tracker.save(tracker.scan_receipt(path, operation="Obra Centro").draft)
    tracker.save(tracker.new_fuel_entry(date="2024-03-02", origin="A", destination="B",
                                        distance_km=50.0, price_per_liter=6.0))

    paths = tracker.export(tmp_path / "reports")

    assert paths["xlsx"].exists()
    assert paths["csv"].exists()
    assert paths["pdf"].exists()
    assert paths["zip"].exists()
    assert len(PdfReader(paths["package"]).pages) == len(PdfReader(paths["pdf"]).pages) + 1


def test_export_without_receipts_skips_zip(tracker, tmp_path):
    tracker.save(tracker.new_fuel_entry(date="2024-03-02", origin="A", destination="B",
                                        distance_km=50.0, price_per_liter=6.0))
    paths = tracker.export(tmp_path / "reports")
    assert paths["zip"] is None
    assert paths["package"] is None


def test_user_id_is_required(store):
    with pytest.raises(ValueError):
        ExpenseTracker(store, None, "")


def test_zero_and_negative_statement_rows_are_imported(tracker, tmp_path):
    path = tmp_path / "extrato.csv"
    path.write_bytes((CSV_HEADER + "\n25/12/2023;CCR;Rod. X;15,50;Pedágio\n"
                      "26/12/2023;CCR;Rod. X;0,00;Pedágio\n"
                      "27/12/2023;CCR;Rod. X;-2,00;Estorno\n").encode("latin-1"))

    preview = tracker.preview_statement(path)
    saved = tracker.confirm_import(preview.drafts)

    assert len(saved) == 3
    assert sorted(t.amount for t in tracker.list()) == [-2.0, 0.0, 15.5]


def test_one_digit_statement_dates_export(tracker, tmp_path):
    path = tmp_path / "extrato.csv"
    path.write_text(CSV_HEADER + "\n5/1/2024;CCR;Rod. X;9,80;Pedágio\n", encoding="latin-1")
    tracker.confirm_import(tracker.preview_statement(path).drafts, operation="Obra Centro")

    [tx] = tracker.list()
    assert tx.date == "2024-01-05"
    assert tracker.export(tmp_path / "reports")["pdf"].exists()


def test_edit_rejects_invalid_dates(tracker):
    saved = tracker.save(Expense(date="2024-03-01", amount=10.0))
    for bad in ("2024-13-45", "tomorrow", "2024-3-1"):
        with pytest.raises(ValidationError):
            tracker.update(saved.id, {"date": bad})
    assert tracker.update(saved.id, {"date": "2024-03-02"}).date == "2024-03-02"


def test_json_file_is_imported_as_new_records(tracker, tmp_path):
    original = tracker.save(tracker.new_fuel_entry(date="2024-03-02", origin="A", destination="B",
                                                   distance_km=50.0, price_per_liter=6.0,
                                                   operation="Obra Norte"))
    path = tmp_path / "backup.json"
    path.write_text(json.dumps([to_app_dict(original)]), encoding="utf-8")

    preview = tracker.preview_statement(path)
    [copy] = tracker.confirm_import(preview.drafts)

    assert copy.id != original.id
    assert copy.operation == "Obra Norte"
    assert copy.total_value == 30.0
    assert len(tracker.list()) == 2
