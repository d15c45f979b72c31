"""
Monthly expense summary per branch and department.
Built from stored ledger rows with pandas.
"""

from calendar import monthrange
from dataclasses import dataclass
from typing import Any, Optional
import logging

import pandas as pd

from ..models.records import CLEARED_FLAGS
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


@dataclass
class DepartmentSummary:
    """Totals for one branch/department in one month."""

    branch: str
    department: str
    month: str  # YYYY-MM
    total_amount: float
    total_count: int
    unapproved_amount: float
    unapproved_count: int
    flagged_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.branch,
            "department": self.department,
            "month": self.month,
            "totalAmount": self.total_amount,
            "totalCount": self.total_count,
            "unapprovedAmount": self.unapproved_amount,
            "unapprovedCount": self.unapproved_count,
            "flaggedCount": self.flagged_count,
        }


def normalize_department_name(department: Optional[str]) -> str:
    """Fold every maintenance variant into ``Maintenance``."""
    if not department or not department.strip():
        return UNASSIGNED
    if "maintenance" in department.lower():
        return "Maintenance"
    return department.strip()


def month_bounds(month: str) -> tuple[str, str]:
    """
    First and last ISO date of a ``YYYY-MM`` month.

    Raises:
        ValidationError: ``month`` is not ``YYYY-MM``
    """
    try:
        year_text, month_text = month.split("-")
        year, month_num = int(year_text), int(month_text)
        last_day = monthrange(year, month_num)[1]
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid month {month!r}; expected YYYY-MM")
    return f"{year:04d}-{month_num:02d}-01", f"{year:04d}-{month_num:02d}-{last_day:02d}"


def month_display(month: str) -> str:
    """``2026-01`` -> ``January 2026``."""
    year, month_num = month.split("-")
    return f"{MONTH_NAMES[int(month_num) - 1]} {year}"


def summarize_by_department(
    records: list[dict[str, Any]], month: str
) -> list[DepartmentSummary]:
    """
    Summarize ledger rows for one month by branch and department.

    Unapproved means the approval status is anything other than ``approved``
    (pending included). Flagged excludes records cleared as ``Good to Sync``.

    Args:
        records: Ledger rows as returned by the store
        month: Month to summarize, ``YYYY-MM``

    Returns:
        One summary per branch/department, largest total first
    """
    start, end = month_bounds(month)
    if not records:
        return []

    df = pd.DataFrame(records)
    for column in ("branch", "department", "approval_status", "flag_category"):
        if column not in df.columns:
            df[column] = None

    dates = pd.to_datetime(df["transaction_date"], errors="coerce")
    df = df[(dates >= pd.Timestamp(start)) & (dates <= pd.Timestamp(end))].copy()
    if df.empty:
        logger.info(f"No ledger records found for {month}")
        return []

    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    df["branch"] = df["branch"].where(df["branch"].notna(), UNASSIGNED)
    df["department"] = df["department"].apply(
        lambda d: normalize_department_name(d if pd.notna(d) else None)
    )
    df["unapproved"] = df["approval_status"] != "approved"
    df["unapproved_amount"] = df["amount"].where(df["unapproved"], 0.0)
    df["flagged"] = df["flag_category"].notna() & ~df["flag_category"].isin(CLEARED_FLAGS)

    grouped = (
        df.groupby(["branch", "department"])
        .agg(
            total_amount=("amount", "sum"),
            total_count=("amount", "size"),
            unapproved_amount=("unapproved_amount", "sum"),
            unapproved_count=("unapproved", "sum"),
            flagged_count=("flagged", "sum"),
        )
        .reset_index()
        .sort_values("total_amount", ascending=False)
    )

    summaries = [
        DepartmentSummary(
            branch=row.branch,
            department=row.department,
            month=month,
            total_amount=round(float(row.total_amount), 2),
            total_count=int(row.total_count),
            unapproved_amount=round(float(row.unapproved_amount), 2),
            unapproved_count=int(row.unapproved_count),
            flagged_count=int(row.flagged_count),
        )
        for row in grouped.itertuples(index=False)
    ]
    logger.info(f"Summarized {len(df)} records into {len(summaries)} department groups for {month}")
    return summaries
