"""
Utility functions and constants for expense processing.
"""

import base64
import datetime as dt
import math
import re
from pathlib import Path
from typing import Optional, Tuple

# File type constants
IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp", ".heic"}
PDF_EXTS = {".pdf"}
JSON_EXTS = {".json"}

MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".pdf": "application/pdf",
    ".xml": "text/xml",
    ".txt": "text/plain",
}

# Pattern constants for degraded parsing
AMOUNT_PATTERN = r"[\d.]+,?\d{2}"            # 100,00 / 1.234,56 / 100.00
ISO_DATE_PATTERN = r"\d{4}-\d{2}-\d{2}"      # 2023-10-25
BR_DATE_PATTERN = r"\d{1,2}/\d{1,2}/\d{4}"   # 25/10/2023, 5/1/2024


def parse_br_amount(s) -> Optional[float]:
    """
    Normalize a Brazilian-formatted amount to float.

    ``"1.234,56"`` -> 1234.56, ``"13,60"`` -> 13.6. Strings without a comma
    are read as plain decimals (``"10.50"`` -> 10.5).
    """
    if s is None:
        return None
    if isinstance(s, (int, float)):
        return float(s) if math.isfinite(s) else None
    s = re.sub(r"[R$\s\"']", "", str(s))
    if not s:
        return None
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    try:
        value = float(s)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def is_finite_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def today_iso() -> str:
    return dt.date.today().isoformat()


def iso_date(year, month, day) -> Optional[str]:
    """Zero-padded ``YYYY-MM-DD`` for a real calendar date, else None."""
    if len(str(year).strip()) != 4:
        return None
    try:
        return dt.date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def br_date_to_iso(s: str) -> Optional[str]:
    """
    Convert ``DD/MM/YYYY`` (or ``D/M/YYYY``) to ``YYYY-MM-DD``.

    A trailing time (``25/12/2023 10:32``) is ignored. Returns None unless
    the value is a real calendar date.
    """
    tokens = (s or "").split()
    if not tokens:
        return None
    parts = tokens[0].split("/")
    if len(parts) != 3:
        return None
    day, month, year = parts
    return iso_date(year, month, day)


def normalize_iso_date(s: str) -> Optional[str]:
    """``2024-1-5`` / ``2024-01-05T10:00`` -> ``2024-01-05``; None if not a real date."""
    tokens = (s or "").strip().split("T")[0].split()
    if not tokens:
        return None
    parts = tokens[0].split("-")
    if len(parts) != 3:
        return None
    return iso_date(*parts)


def to_iso_date(s: str) -> Optional[str]:
    """Accept ISO or Brazilian input, as typed on the command line."""
    if "/" in (s or ""):
        return br_date_to_iso(s)
    return normalize_iso_date(s)


def iso_to_br(s: str) -> str:
    """Format an ISO date for display as ``DD/MM/YYYY``."""
    if not s:
        return ""
    parts = s[:10].split("-")
    if len(parts) != 3:
        return s
    year, month, day = parts
    return f"{day}/{month}/{year}"


def media_type_for(path: Path) -> str:
    return MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")


def to_data_uri(data: bytes, media_type: str) -> str:
    """Encode bytes as a ``data:`` URI, the format receipts are stored in."""
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def split_data_uri(value: str) -> Tuple[Optional[str], str]:
    """Return (media_type, base64 payload). Bare base64 yields a None media type."""
    if value.startswith("data:") and "," in value:
        meta, payload = value.split(",", 1)
        return meta[len("data:"):].split(";")[0] or None, payload
    return None, value


def extension_for_receipt(value: str) -> str:
    """Pick a file extension for a stored receipt from its data URI header."""
    media_type, _ = split_data_uri(value)
    meta = media_type or ""
    if "pdf" in meta:
        return "pdf"
    if "xml" in meta:
        return "xml"
    if "text" in meta:
        return "txt"
    if "png" in meta:
        return "png"
    return "jpg"


def money_fmt(v: Optional[float]) -> str:
    """Format amount as Brazilian currency."""
    if v is None:
        return ""
    s = f"{v:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {s}"
