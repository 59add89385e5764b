"""
Categorization logic for statement lines based on rules.
"""

import json
import re
from pathlib import Path
from typing import Dict, Optional, Tuple

from .models import ExpenseCategory

# Matchers are tried in order; the transaction-type column outranks the
# establishment name.
DEFAULT_STATEMENT_RULES = {
    "matchers": [
        {"name": "Toll (transaction type)",
         "any": [{"type_re": r"PED[AÁ]GIO"}],
         "category": ExpenseCategory.PEDAGIO.value},
        {"name": "Parking (transaction type)",
         "any": [{"type_re": r"ESTACIONAMENTO"}],
         "category": ExpenseCategory.ESTACIONAMENTO.value},
        {"name": "Parking (establishment)",
         "any": [{"name_re": r"ESTACIONAMENTO|SHOPPING"}],
         "category": ExpenseCategory.ESTACIONAMENTO.value},
        {"name": "Toll operator",
         "any": [{"name_re": r"CCR|VIAS|ARTERIS|AUTOBAN"}],
         "category": ExpenseCategory.PEDAGIO.value},
    ],
    "default": ExpenseCategory.TAXAS.value,
}


def load_rules(path: Optional[Path]) -> Dict:
    """Load categorization rules from JSON file, falling back to the built-in set."""
    if path is None or not path.exists():
        return DEFAULT_STATEMENT_RULES
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _rule_matches(rule: Dict, transaction_type: str, establishment: str) -> bool:
    tre = rule.get("type_re")
    nre = rule.get("name_re")
    if tre and re.search(tre, transaction_type, flags=re.IGNORECASE):
        return True
    if nre and re.search(nre, establishment, flags=re.IGNORECASE):
        return True
    return False


def categorize_statement_line(transaction_type: str, establishment: str,
                              rules: Optional[Dict] = None) -> Tuple[str, Optional[str]]:
    """
    Categorize a toll/parking statement line.

    Args:
        transaction_type: Value of the transaction-type column ("" if absent)
        establishment: Establishment name ("" if absent)
        rules: Rules dictionary with format:
            {
              "matchers": [
                {"name": "Toll", "any": [{"type_re": "PEDAGIO"}], "category": "Pedágio"},
                {"name": "Parking", "all": [{"name_re": "SHOPPING"}], "category": "Estacionamento"}
              ],
              "default": "Taxas"
            }

    Returns:
        Tuple of (category, matcher_name)
    """
    rules = rules or DEFAULT_STATEMENT_RULES
    t = transaction_type or ""
    n = establishment or ""

    for m in rules.get("matchers", []):
        any_rules = m.get("any", [])
        all_rules = m.get("all", [])

        matched_any = not any_rules or any(_rule_matches(r, t, n) for r in any_rules)
        matched_all = all(_rule_matches(r, t, n) for r in all_rules)

        if matched_any and matched_all:
            return (m.get("category") or rules.get("default", ExpenseCategory.TAXAS.value),
                    m.get("name"))

    # fallback
    return (rules.get("default", ExpenseCategory.TAXAS.value), None)
