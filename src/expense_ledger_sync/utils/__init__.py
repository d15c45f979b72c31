"""Utility modules."""

from .exceptions import (
    LedgerSyncError,
    ConfigurationError,
    ValidationError,
    SourceAPIError,
    SourceTimeoutError,
    SourceConnectionError,
    LedgerStoreError,
    AuditLogError,
    SyncAbortedError,
    NotificationError,
)
from .logging_config import setup_logging, level_from_name

__all__ = [
    "LedgerSyncError",
    "ConfigurationError",
    "ValidationError",
    "SourceAPIError",
    "SourceTimeoutError",
    "SourceConnectionError",
    "LedgerStoreError",
    "AuditLogError",
    "SyncAbortedError",
    "NotificationError",
    "setup_logging",
    "level_from_name",
]
