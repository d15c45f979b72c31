"""Data models for ledger sync."""

from .records import (
    APPROVAL_STATUSES,
    CLEARED_FLAGS,
    FLAG_CATEGORIES,
    CustomFieldValue,
    ExternalRecord,
    FieldSet,
    LedgerRecord,
    RecordSource,
    SyncState,
    TransactionType,
)
from .sync_run import (
    ErrorRecord,
    ReconcileResult,
    SyncKind,
    SyncRun,
    SyncRunStatus,
    SyncSummary,
)

__all__ = [
    "APPROVAL_STATUSES",
    "CLEARED_FLAGS",
    "FLAG_CATEGORIES",
    "CustomFieldValue",
    "ExternalRecord",
    "FieldSet",
    "LedgerRecord",
    "RecordSource",
    "SyncState",
    "TransactionType",
    "ErrorRecord",
    "ReconcileResult",
    "SyncKind",
    "SyncRun",
    "SyncRunStatus",
    "SyncSummary",
]
