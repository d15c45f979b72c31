"""Reporting over stored ledger rows."""

from .department_summary import (
    DepartmentSummary,
    month_bounds,
    normalize_department_name,
    summarize_by_department,
)

__all__ = [
    "DepartmentSummary",
    "month_bounds",
    "normalize_department_name",
    "summarize_by_department",
]
