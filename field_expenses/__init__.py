"""
Field Expenses

Expense reimbursement tracking for field workers: receipt capture with AI
extraction, fuel reimbursement by distance, toll/parking statement import
and spreadsheet/PDF/ZIP exports.
"""

__version__ = "1.0.0"
__author__ = "Field Expenses Contributors"

from field_expenses.core.models import Expense, FuelEntry

__all__ = ["Expense", "FuelEntry"]
