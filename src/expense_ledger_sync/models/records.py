"""Data models for upstream records and reconciled ledger rows."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class RecordSource(Enum):
    """Source system for an external record."""

    CARD = "card"  # Bill.com Spend & Expense card transaction
    ERP_BILL = "erp_bill"  # NetSuite vendor bill


class SyncState(Enum):
    """Accounting-integration sync state reported by the card platform."""

    SYNCED = "SYNCED"
    MANUAL_SYNCED = "MANUAL_SYNCED"
    NOT_SYNCED = "NOT_SYNCED"
    ERROR = "ERROR"

    @property
    def known_state(self) -> Optional["SyncState"]:
        """
        State a record fetched from this partition is known to be in.

        Manual syncs count as synced. The NOT_SYNCED partition also returns
        records whose state the platform has not settled yet, so it proves
        nothing on its own.
        """
        if self in (SyncState.SYNCED, SyncState.MANUAL_SYNCED):
            return SyncState.SYNCED
        if self is SyncState.ERROR:
            return SyncState.ERROR
        return None

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SyncState"]:
        """Parse an upstream value, returning None for anything unrecognised."""
        if not value:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return None


class TransactionType(Enum):
    """Ledger transaction-type discriminator."""

    CREDIT_CARD = "Credit Card"
    VENDOR_BILL = "Vendor Bill"


FLAG_CATEGORIES = (
    "Needs Review",
    "Wrong Department",
    "Duplicate",
    "Personal",
    "Good to Sync",
)

# Flags that mean a reviewer has cleared the record
CLEARED_FLAGS = ("Good to Sync",)

APPROVAL_STATUSES = ("approved", "rejected")


@dataclass
class CustomFieldValue:
    """
    One custom/extension field value attached to a card transaction.

    The platform identifies the field definition by ``customFieldUuid`` on some
    payloads and ``uuid`` on others, so every identifier seen is kept.
    """

    field_ids: tuple[str, ...]
    note: Optional[str] = None
    selected_values: list[str] = field(default_factory=list)

    @property
    def value(self) -> Optional[str]:
        """Free text wins over selected options; options are comma-joined."""
        if self.note:
            return self.note
        if self.selected_values:
            return ", ".join(self.selected_values)
        return None


@dataclass
class FieldSet:
    """Fixed-shape business fields resolved from custom fields or ERP lines."""

    branch: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None
    memo: Optional[str] = None


@dataclass
class ExternalRecord:
    """
    Read-only view of a transaction or bill returned by an external API.

    Card transactions carry raw custom fields that are indexed per run;
    ERP bills arrive with their expense-line fields already resolved.
    """

    source: RecordSource
    source_id: str
    occurred: str
    amount: Decimal
    merchant_name: Optional[str] = None
    user_id: Optional[str] = None
    custom_fields: list[CustomFieldValue] = field(default_factory=list)
    budget_id: Optional[str] = None
    complete: Optional[bool] = None
    status: Optional[str] = None
    currency: Optional[str] = None

    # Card sync state as implied by the partition the record was fetched from
    known_sync_state: Optional[SyncState] = None
    # accountingIntegrationTransactions[0].syncStatus, when present
    integration_sync_state: Optional[str] = None

    line_fields: Optional[FieldSet] = None

    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class LedgerRecord:
    """Reconciled ledger row, keyed by its namespaced external identifier."""

    external_id: str
    transaction_date: date
    vendor_name: str
    amount: Decimal
    currency: str
    transaction_type: TransactionType
    memo: Optional[str] = None
    branch: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None
    cardholder: Optional[str] = None
    status: Optional[str] = None
    sync_status: Optional[str] = None
    flag_category: Optional[str] = None

    def to_row(self, synced_at: datetime) -> dict[str, Any]:
        """Serialize for the ledger store."""
        return {
            "external_id": self.external_id,
            "transaction_date": self.transaction_date.isoformat(),
            "vendor_name": self.vendor_name,
            "amount": float(self.amount),
            "currency": self.currency,
            "status": self.status,
            "department": self.department,
            "branch": self.branch,
            "memo": self.memo,
            "category": self.category,
            "transaction_type": self.transaction_type.value,
            "cardholder": self.cardholder,
            "flag_category": self.flag_category,
            "sync_status": self.sync_status,
            "last_synced_at": synced_at.isoformat(),
        }
