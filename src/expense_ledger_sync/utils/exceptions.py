"""Custom exceptions for the expense ledger sync application."""

from typing import Any, Optional


class LedgerSyncError(Exception):
    """Base exception for ledger sync errors."""

    pass


class ConfigurationError(LedgerSyncError):
    """Error in configuration."""

    pass


class ValidationError(LedgerSyncError):
    """Invalid input for a ledger action."""

    pass


class SourceAPIError(LedgerSyncError):
    """Upstream API returned a non-2xx response."""

    def __init__(self, source: str, status_code: int, body: str):
        self.source = source
        self.status_code = status_code
        self.body = body
        super().__init__(f"{source} API Error: {status_code} - {body}")


class SourceTimeoutError(LedgerSyncError):
    """Upstream API request exceeded the request timeout."""

    def __init__(self, source: str, timeout_seconds: float):
        self.source = source
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{source} API request timed out after {timeout_seconds:g} seconds. "
            "Try reducing the date range or fetching in smaller batches."
        )


class SourceConnectionError(LedgerSyncError):
    """Upstream API could not be reached or answered with an unreadable body."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"{source} API request failed: {detail}")


class LedgerStoreError(LedgerSyncError):
    """Error reading from or writing to the ledger store."""

    pass


class AuditLogError(LedgerSyncError):
    """Sync run bookkeeping was used out of order."""

    pass


class SyncAbortedError(LedgerSyncError):
    """A sync run could not produce its work-set and was marked failed."""

    def __init__(self, message: str, run: Optional[Any] = None):
        self.run = run
        super().__init__(message)


class NotificationError(LedgerSyncError):
    """Error delivering a chat notification."""

    pass
