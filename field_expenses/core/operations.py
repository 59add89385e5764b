"""
Active operations list, synced from a published Google Sheet.
"""

import csv
import datetime as dt
import io
import json
from pathlib import Path
from typing import Iterable, List, Optional

import httpx

SHEET_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq?tqx=out:csv&sheet={sheet_name}"
OPERATION_COLUMN = 3  # column D

MONTHS = ["JANEIRO", "FEVEREIRO", "MARÇO", "ABRIL", "MAIO", "JUNHO",
          "JULHO", "AGOSTO", "SETEMBRO", "OUTUBRO", "NOVEMBRO", "DEZEMBRO"]


class OperationsSyncError(Exception):
    """The operations sheet could not be downloaded or read."""


def current_month_sheet(today: Optional[dt.date] = None) -> str:
    today = today or dt.date.today()
    return MONTHS[today.month - 1]


def parse_operations_csv(text: str) -> List[str]:
    """Column D of every data row, cleaned, unique and sorted."""
    reader = csv.reader(io.StringIO(text))
    next(reader, None)  # header
    found = set()
    for row in reader:
        if len(row) <= OPERATION_COLUMN:
            continue
        name = row[OPERATION_COLUMN].replace('"', "").strip()
        if name and name.lower() != "undefined":
            found.add(name)
    return sorted(found)


def fetch_sheet_operations(sheet_id: str, sheet_name: Optional[str] = None,
                           client: Optional[httpx.Client] = None,
                           timeout: float = 20.0) -> List[str]:
    """
    Download the month sheet as CSV and return the operation names in it.

    Raises ``OperationsSyncError`` when the sheet is unreachable.
    """
    if not sheet_id:
        raise OperationsSyncError("No operations sheet configured (OPERATIONS_SHEET_ID)")
    sheet_name = sheet_name or current_month_sheet()
    url = SHEET_URL.format(sheet_id=sheet_id, sheet_name=sheet_name)

    own_client = client is None
    client = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        resp = client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise OperationsSyncError(f"Could not download sheet {sheet_name}: {e}") from e
    finally:
        if own_client:
            client.close()

    return parse_operations_csv(resp.text)


class OperationsCache:
    """Operations known locally, persisted as a JSON list."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def load(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            print(f"[WARN] Ignoring unreadable operations cache: {self.path}")
            return []
        return [str(x) for x in data] if isinstance(data, list) else []

    def save(self, operations: Iterable[str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(sorted(set(operations)), ensure_ascii=False, indent=2),
                             encoding="utf-8")

    def merge(self, new: Iterable[str]) -> List[str]:
        """Union the cached list with ``new``; returns and saves the result."""
        merged = sorted(set(self.load()) | {o for o in new if o})
        self.save(merged)
        return merged
