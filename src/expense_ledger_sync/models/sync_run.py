"""Data models for sync runs and reconciliation results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SyncRunStatus(Enum):
    """Lifecycle status of a sync run."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @classmethod
    def from_counts(cls, error_count: int, total: int) -> "SyncRunStatus":
        """Terminal status as a pure function of error and record counts."""
        if total > 0 and error_count >= total:
            return cls.FAILED
        if error_count > 0:
            return cls.PARTIAL
        return cls.SUCCESS


class SyncKind(Enum):
    """Which pipeline produced a run."""

    CREDIT_CARDS = "credit_cards"
    CREDIT_CARDS_HISTORICAL = "credit_cards_historical"
    VENDOR_BILLS = "vendor_bills"


@dataclass
class ErrorRecord:
    """Per-record failure captured during reconciliation."""

    record_id: str
    vendor: Optional[str]
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.record_id,
            "vendor": self.vendor,
            "error": self.error,
        }


@dataclass
class ReconcileResult:
    """Counters produced by one pass of the reconciliation engine."""

    created: int = 0
    updated: int = 0
    flags_preserved: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    sync_status_breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.created + self.updated + len(self.errors)


@dataclass
class SyncRun:
    """Audit record for one reconciliation run."""

    kind: SyncKind
    started_at: datetime
    id: Optional[Any] = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    completed_at: Optional[datetime] = None
    records_fetched: int = 0
    records_created: int = 0
    records_updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.completed_at is not None

    def to_insert_row(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "sync_type": self.kind.value,
            "sync_started_at": self.started_at.isoformat(),
        }

    def to_update_row(self) -> dict[str, Any]:
        return {
            "sync_completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_fetched": self.records_fetched,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "errors": self.errors or None,
            "status": self.status.value,
        }


@dataclass
class SyncSummary:
    """JSON-facing summary returned to whoever triggered a run."""

    run: SyncRun
    result: ReconcileResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.run.status is not SyncRunStatus.FAILED,
            "runId": self.run.id,
            "status": self.run.status.value,
            "fetched": self.run.records_fetched,
            "created": self.result.created,
            "updated": self.result.updated,
            "flagsPreserved": self.result.flags_preserved,
            "syncStatusBreakdown": dict(self.result.sync_status_breakdown),
            "errors": [e.to_dict() for e in self.result.errors],
        }

    @property
    def message(self) -> str:
        return (
            f"{self.result.created} created, {self.result.updated} updated, "
            f"{self.result.flags_preserved} flags preserved, "
            f"{len(self.result.errors)} errors"
        )
