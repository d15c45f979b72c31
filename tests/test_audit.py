"""Tests for the sync run audit log."""

from datetime import datetime, timedelta, timezone

import pytest

from expense_ledger_sync.audit import SyncAuditLog
from expense_ledger_sync.models.sync_run import (
    ErrorRecord,
    ReconcileResult,
    SyncKind,
    SyncRunStatus,
)
from expense_ledger_sync.utils.exceptions import AuditLogError


@pytest.fixture
def clock():
    ticks = iter(datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc) + timedelta(seconds=i) for i in range(100))
    return lambda: next(ticks)


def test_start_inserts_running_row(store, clock):
    audit = SyncAuditLog(store, clock)

    run = audit.start(SyncKind.VENDOR_BILLS)

    assert run.id == 1
    assert run.status is SyncRunStatus.RUNNING
    assert store.runs[1] == {
        "status": "running",
        "sync_type": "vendor_bills",
        "sync_started_at": "2026-01-10T09:00:00+00:00",
    }


def test_finish_records_counts_once(store, clock):
    audit = SyncAuditLog(store, clock)
    run = audit.start(SyncKind.CREDIT_CARDS)
    result = ReconcileResult(
        created=3, updated=5, errors=[ErrorRecord(record_id="9", vendor="Lowe's", error="boom")]
    )

    audit.finish(run, 9, result)

    row = store.runs[run.id]
    assert row["status"] == "partial"
    assert row["records_fetched"] == 9
    assert row["records_created"] == 3
    assert row["records_updated"] == 5
    assert row["errors"] == [{"transaction_id": "9", "vendor": "Lowe's", "error": "boom"}]
    assert row["sync_completed_at"] == "2026-01-10T09:00:01+00:00"


def test_finish_twice_raises(store, clock):
    audit = SyncAuditLog(store, clock)
    run = audit.start(SyncKind.CREDIT_CARDS)
    audit.finish(run, 0, ReconcileResult())

    with pytest.raises(AuditLogError):
        audit.finish(run, 0, ReconcileResult())
    with pytest.raises(AuditLogError):
        audit.fail(run, "late failure")

    assert store.run_update_count[run.id] == 1
    assert store.runs[run.id]["status"] == "success"


def test_fail_writes_single_error(store, clock):
    audit = SyncAuditLog(store, clock)
    run = audit.start(SyncKind.CREDIT_CARDS)

    audit.fail(run, "Bill.com API Error: 500 - upstream")

    row = store.runs[run.id]
    assert row["status"] == "failed"
    assert row["errors"] == [{"error": "Bill.com API Error: 500 - upstream"}]


@pytest.mark.parametrize(
    "errors, total, expected",
    [
        (0, 0, SyncRunStatus.SUCCESS),
        (0, 5, SyncRunStatus.SUCCESS),
        (1, 5, SyncRunStatus.PARTIAL),
        (4, 5, SyncRunStatus.PARTIAL),
        (5, 5, SyncRunStatus.FAILED),
    ],
)
def test_status_from_counts(errors, total, expected):
    assert SyncRunStatus.from_counts(errors, total) is expected
