"""
Parsers for extracting information from AI service responses.

The extraction service is asked for JSON but does not always comply: it
wraps answers in markdown fences, adds prose around them, or answers with
plain text. These helpers salvage what they can.
"""

import json
import re
from typing import Any, Optional

from .utils import AMOUNT_PATTERN, ISO_DATE_PATTERN, BR_DATE_PATTERN, \
    br_date_to_iso, normalize_iso_date, parse_br_amount, today_iso

_BOUNDS = {
    "object": ("{", "}"),
    "array": ("[", "]"),
}


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers the model likes to add."""
    return text.replace("```json", "").replace("```", "").strip()


def extract_json_block(text: str, kind: str = "object") -> Optional[Any]:
    """
    Parse the JSON object or array embedded in ``text``.

    Only the substring between the first opening and the last closing
    bracket of the requested kind is parsed. Returns None if there is no
    such substring or it is not valid JSON.
    """
    if not text:
        return None
    opening, closing = _BOUNDS[kind]
    cleaned = strip_code_fences(text)
    first = cleaned.find(opening)
    last = cleaned.rfind(closing)
    if first == -1 or last == -1 or last < first:
        return None
    try:
        return json.loads(cleaned[first:last + 1])
    except json.JSONDecodeError:
        return None


def parse_amount(text: str) -> Optional[float]:
    """
    Extract the first monetary value (``100,00``, ``1.234,56``) from free text.

    Digit runs that do not read as an amount (CNPJ fragments like
    ``12.345.678``) are passed over.
    """
    for m in re.finditer(AMOUNT_PATTERN, text or ""):
        value = parse_br_amount(m.group(0))
        if value is not None:
            return value
    return None


def parse_date(text: str) -> Optional[str]:
    """Extract an ISO or ``DD/MM/YYYY`` date from free text, as ISO."""
    text = text or ""
    for m in re.finditer(ISO_DATE_PATTERN, text):
        iso = normalize_iso_date(m.group(0))
        if iso:
            return iso
    for m in re.finditer(BR_DATE_PATTERN, text):
        iso = br_date_to_iso(m.group(0))
        if iso:
            return iso
    return None


def fallback_fields(text: str) -> dict:
    """Regex extraction used when the response is not well-formed JSON."""
    return {
        "amount": parse_amount(text) or 0.0,
        "date": parse_date(text) or today_iso(),
    }
