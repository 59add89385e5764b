"""
Spreadsheet, ZIP and PDF reporting.
"""

import base64
import binascii
import calendar
import csv
import datetime as dt
import io
import re
import zipfile
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from .fuel import reconcile
from .models import Expense, FuelEntry, Transaction
from .utils import extension_for_receipt, iso_to_br, money_fmt, normalize_iso_date, split_data_uri

REPORT_COLUMNS = ["Data", "Cidade", "Valor em Reais", "Tipo da Despesa",
                  "Operações CMS", "Observação", "Valor Apropriado", "Valor Nota"]
COLUMN_WIDTHS = [12, 30, 15, 22, 25, 40, 15, 15]

FUEL_CATEGORY = "Combustível"


def category_label(tx: Transaction) -> str:
    if isinstance(tx, Expense):
        return getattr(tx.category, "value", tx.category)
    return FUEL_CATEGORY


def report_row(tx: Transaction) -> Dict:
    """Display columns for one transaction."""
    if isinstance(tx, Expense):
        return {
            "Data": iso_to_br(tx.date),
            "Cidade": tx.city,
            "Valor em Reais": tx.amount,
            "Tipo da Despesa": category_label(tx),
            "Operações CMS": tx.operation,
            "Observação": tx.notes,
            "Valor Apropriado": tx.amount,
            "Valor Nota": tx.receipt_amount,
        }
    if isinstance(tx, FuelEntry):
        return {
            "Data": iso_to_br(tx.date),
            "Cidade": f"{tx.origin} -> {tx.destination}",
            "Valor em Reais": tx.total_value,
            "Tipo da Despesa": FUEL_CATEGORY,
            "Operações CMS": tx.operation,
            "Observação": f"{tx.car_type.value} - {tx.road_type.value} ({tx.distance_km:g}km) "
                          f"{tx.fuel_type.value}",
            "Valor Apropriado": tx.total_value,
            "Valor Nota": tx.receipt_amount,
        }
    raise TypeError(f"Not a transaction: {tx!r}")


def sort_by_date(transactions: List[Transaction]) -> List[Transaction]:
    """Newest first."""
    return sorted(transactions, key=lambda t: t.date or "", reverse=True)


def totals(transactions: List[Transaction]) -> float:
    """Reimbursement total: expense amounts plus computed fuel values."""
    return round(sum(t.value for t in transactions), 2)


def write_csv(transactions: List[Transaction], out_csv: Path):
    """Write transactions to CSV file (semicolon separated, for spreadsheet users in Brazil)."""
    with out_csv.open("w", newline="", encoding="utf-8-sig") as f:
        w = csv.DictWriter(f, fieldnames=REPORT_COLUMNS, delimiter=";")
        w.writeheader()
        for t in sort_by_date(transactions):
            w.writerow(report_row(t))


def write_xlsx(transactions: List[Transaction], out_xlsx: Path, title: str = "Relatório"):
    """Write transactions to an Excel workbook."""
    from openpyxl import Workbook
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    wb = Workbook()
    ws = wb.active
    ws.title = title

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="EA580C", end_color="EA580C", fill_type="solid")
    ws.append(REPORT_COLUMNS)
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    for t in sort_by_date(transactions):
        row = report_row(t)
        ws.append([row[c] for c in REPORT_COLUMNS])

    money_cols = [REPORT_COLUMNS.index(c) + 1 for c in ("Valor em Reais", "Valor Apropriado", "Valor Nota")]
    for row in ws.iter_rows(min_row=2):
        for idx in money_cols:
            row[idx - 1].number_format = '"R$" #,##0.00'

    for idx, width in enumerate(COLUMN_WIDTHS, 1):
        ws.column_dimensions[get_column_letter(idx)].width = width
    ws.freeze_panes = "A2"

    total_row = ws.max_row + 2
    ws.cell(row=total_row, column=2, value="Total").font = Font(bold=True)
    total_cell = ws.cell(row=total_row, column=3, value=totals(transactions))
    total_cell.font = Font(bold=True)
    total_cell.number_format = '"R$" #,##0.00'

    wb.save(out_xlsx.as_posix())


def receipt_filename(tx: Transaction, index: int) -> str:
    """``<date>_<category>_R$<amount>_<index>.<ext>`` for a stored receipt."""
    safe_date = tx.date or "sem-data"
    safe_cat = re.sub(r"[^a-z0-9]", "_", category_label(tx), flags=re.IGNORECASE)
    safe_amt = f"{tx.value:.2f}".replace(".", "-")
    return f"{safe_date}_{safe_cat}_R${safe_amt}_{index}.{extension_for_receipt(tx.receipt_image)}"


def build_receipts_zip(transactions: List[Transaction], out_zip: Path) -> int:
    """
    Bundle every attached receipt into a ZIP file.

    Returns the number of receipts written. No file is created when there
    is nothing to bundle.
    """
    entries = []
    for index, t in enumerate(transactions):
        if not t.receipt_image:
            continue
        _, payload = split_data_uri(t.receipt_image)
        try:
            data = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            print(f"[WARN] Skipping unreadable receipt for {t.date} ({t.id}): {e}")
            continue
        entries.append((receipt_filename(t, index), data))

    if not entries:
        return 0

    with zipfile.ZipFile(out_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return len(entries)


def build_claim_package(summary_pdf: Path, transactions: List[Transaction], out_pdf: Path) -> int:
    """
    Merge the summary PDF and every attached receipt into one document.

    Receipts are appended oldest first. PDF receipts are copied page by
    page, images are placed on their own page; XML/text receipts are left
    to the ZIP bundle.

    Returns:
        Number of receipts included
    """
    from pypdf import PdfReader, PdfWriter
    from pypdf.errors import PdfReadError

    from .ocr import image_to_pdf

    writer = PdfWriter()
    writer.append(PdfReader(summary_pdf.as_posix()))

    included = 0
    for t in sorted(transactions, key=lambda x: x.date or ""):
        if not t.receipt_image:
            continue
        ext = extension_for_receipt(t.receipt_image)
        if ext not in ("pdf", "png", "jpg"):
            continue
        _, payload = split_data_uri(t.receipt_image)
        try:
            data = base64.b64decode(payload)
            if ext != "pdf":
                data = image_to_pdf(data)
            writer.append(PdfReader(io.BytesIO(data)))
            included += 1
        except (binascii.Error, PdfReadError, OSError, ValueError) as e:
            print(f"[WARN] Skipping receipt of {t.date} ({category_label(t)}): {e}")

    with out_pdf.open("wb") as f:
        writer.write(f)
    return included


def build_placeholder_receipt(date: str, location: str, amount: float) -> bytes:
    """
    Generate a one-page PDF standing in for a receipt that was never issued
    as a document (statement line items).
    """
    from reportlab.lib.pagesizes import A6
    from reportlab.pdfgen import canvas
    from reportlab.lib.units import mm

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A6)
    width, height = A6
    y = height - 15 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(10 * mm, y, "Comprovante de extrato")
    y -= 10 * mm
    c.setFont("Helvetica", 9)
    for label, value in (("Data", iso_to_br(date)), ("Local", location or "-"),
                         ("Valor", money_fmt(amount))):
        c.drawString(10 * mm, y, f"{label}: {value}"[:70])
        y -= 6 * mm
    y -= 4 * mm
    c.setFont("Helvetica-Oblique", 7)
    c.drawString(10 * mm, y, "Documento gerado a partir de importação de extrato.")
    c.showPage()
    c.save()
    return buf.getvalue()


def reconciliation_warnings(transactions: List[Transaction]) -> List[str]:
    """Fuel entries whose invoice is lower than the computed reimbursement."""
    warnings = []
    for t in transactions:
        if isinstance(t, FuelEntry):
            w = reconcile(t)
            if w:
                warnings.append(f"{iso_to_br(t.date)} {t.origin} -> {t.destination}: {w}")
    return warnings


def build_summary_pdf(transactions: List[Transaction], out_pdf: Path,
                      title: str = "Relatório de Despesas",
                      owner: Optional[str] = None):
    """
    Build summary PDF: category and monthly totals, line items grouped by
    month, and reconciliation warnings for fuel entries.
    """
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas
    from reportlab.lib.units import inch
    from reportlab.lib.colors import black, red

    monthly_data = defaultdict(list)
    monthly_totals = defaultdict(float)
    category_totals = defaultdict(float)
    for t in transactions:
        iso = normalize_iso_date(t.date)
        year_month = iso[:7] if iso else "Unknown"
        monthly_data[year_month].append(t)
        monthly_totals[year_month] += t.value
        category_totals[category_label(t)] += t.value

    c = canvas.Canvas(out_pdf.as_posix(), pagesize=A4)
    width, height = A4

    def new_page():
        c.showPage()
        return height - 1 * inch

    # Title page
    y = height - 1 * inch
    c.setFont("Helvetica-Bold", 16)
    c.drawString(1 * inch, y, title)
    y -= 0.3 * inch
    c.setFont("Helvetica", 10)
    c.drawString(1 * inch, y, f"Generated: {dt.datetime.now().isoformat(timespec='seconds')}")
    if owner:
        y -= 0.2 * inch
        c.drawString(1 * inch, y, f"User: {owner}")
    y -= 0.2 * inch
    c.drawString(1 * inch, y, f"Total: {money_fmt(totals(transactions))}")
    y -= 0.4 * inch

    sections = [("Category Totals", sorted(category_totals.items()))]
    month_lines = []
    for ym in sorted(monthly_data):
        if ym != "Unknown":
            year, month = ym.split("-")
            month_lines.append((f"{calendar.month_name[int(month)]} {year}", monthly_totals[ym]))
        else:
            month_lines.append((ym, monthly_totals[ym]))
    sections.append(("Monthly Totals", month_lines))

    for heading, lines in sections:
        c.setFont("Helvetica-Bold", 12)
        c.drawString(1 * inch, y, heading)
        y -= 0.25 * inch
        c.setFont("Helvetica", 10)
        for label, amt in lines:
            c.drawString(1.1 * inch, y, f"{label}: {money_fmt(amt)}")
            y -= 0.2 * inch
            if y < 1.2 * inch:
                y = new_page()
        y -= 0.2 * inch

    warnings = reconciliation_warnings(transactions)
    if warnings:
        c.setFont("Helvetica-Bold", 12)
        c.setFillColor(red)
        c.drawString(1 * inch, y, "Invoice mismatches")
        y -= 0.25 * inch
        c.setFont("Helvetica", 9)
        for w in warnings:
            c.drawString(1.1 * inch, y, w[:110])
            y -= 0.2 * inch
            if y < 1.2 * inch:
                y = new_page()
        c.setFillColor(black)

    # Line items grouped by month
    for ym in sorted(monthly_data):
        y = new_page()
        c.setFont("Helvetica-Bold", 14)
        c.drawString(1 * inch, y, ym)
        y -= 0.3 * inch
        c.setFont("Helvetica", 9)
        for t in sorted(monthly_data[ym], key=lambda x: x.date or ""):
            row = report_row(t)
            line = (f"{row['Data']}  {row['Tipo da Despesa'][:18]:<18}  {row['Cidade'][:34]:<34}  "
                    f"{row['Operações CMS'][:18]:<18}  {money_fmt(t.value):>12}")
            c.drawString(0.8 * inch, y, line)
            y -= 0.18 * inch
            if y < 1 * inch:
                y = new_page()
                c.setFont("Helvetica", 9)

    c.showPage()
    c.save()
