"""Shared fixtures: an in-memory ledger store, fake source clients and payload builders."""

from datetime import date, datetime
from typing import Any, Optional

import pytest

from expense_ledger_sync.config import SyncConfig, load_config
from expense_ledger_sync.models.records import LedgerRecord
from expense_ledger_sync.models.sync_run import SyncRun
from expense_ledger_sync.sources.bill_spend import parse_transaction
from expense_ledger_sync.store.ledger import LedgerStore
from expense_ledger_sync.utils.exceptions import LedgerStoreError

CUSTOM_FIELD_DEFINITIONS = [
    {"uuid": "cf-branch", "name": "Branch"},
    {"uuid": "cf-dept", "name": "Department"},
    {"uuid": "cf-cat", "name": "Purchase Category"},
    {"uuid": "cf-old-cat", "name": "Purchase Category", "retired": True},
]

USERS = [
    {"id": "u1", "firstName": "Dana", "lastName": "Reyes"},
    {"id": "u2", "firstName": "Sam", "lastName": None},
    {"id": "u3"},
]


class InMemoryLedgerStore(LedgerStore):
    """Dict-backed LedgerStore with the same upsert and flag rules as the SQL function."""

    def __init__(self):
        self.rows: dict[str, dict[str, Any]] = {}
        self.runs: dict[int, dict[str, Any]] = {}
        self.run_update_count: dict[int, int] = {}
        self.fail_upsert_ids: set[str] = set()
        self.fail_flag_lookup = False
        self.flag_lookup_batches: list[list[str]] = []
        self.upsert_calls = 0

    def fetch_existing_flags(self, external_ids, chunk_size=100):
        flags = {}
        for start in range(0, len(external_ids), chunk_size):
            batch = external_ids[start:start + chunk_size]
            self.flag_lookup_batches.append(batch)
            if self.fail_flag_lookup:
                raise LedgerStoreError("connection reset")
            for external_id in batch:
                if external_id in self.rows:
                    flags[external_id] = self.rows[external_id].get("flag_category")
        return flags

    def upsert_record(self, record: LedgerRecord, synced_at: datetime) -> bool:
        self.upsert_calls += 1
        if record.external_id in self.fail_upsert_ids:
            raise LedgerStoreError(f"write failed for {record.external_id}")

        row = record.to_row(synced_at)
        existing = self.rows.get(record.external_id)
        if existing is None:
            self.rows[record.external_id] = row
            return True

        flag = existing.get("flag_category") or row["flag_category"]
        existing.update(row)
        existing["flag_category"] = flag
        return False

    def create_sync_run(self, run: SyncRun):
        run_id = len(self.runs) + 1
        self.runs[run_id] = run.to_insert_row()
        self.run_update_count[run_id] = 0
        return run_id

    def update_sync_run(self, run: SyncRun) -> None:
        self.runs[run.id].update(run.to_update_row())
        self.run_update_count[run.id] += 1

    def set_flag(self, external_id, flag_category):
        row = self._row(external_id)
        row["flag_category"] = flag_category
        return row

    def set_approval(self, external_id, status, modified_by, modified_at):
        row = self._row(external_id)
        row["approval_status"] = status
        row["approval_modified_by"] = modified_by
        row["approval_modified_at"] = modified_at.isoformat()
        return row

    def _row(self, external_id):
        if external_id not in self.rows:
            raise LedgerStoreError(f"Record not found: {external_id}")
        return self.rows[external_id]

    def last_successful_sync(self) -> Optional[str]:
        completed = [
            r["sync_completed_at"] for r in self.runs.values()
            if r.get("status") == "success" and r.get("sync_completed_at")
        ]
        return max(completed) if completed else None

    def list_records(self, start_date=None, end_date=None, branch=None):
        rows = list(self.rows.values())
        if start_date:
            rows = [r for r in rows if r["transaction_date"] >= start_date]
        if end_date:
            rows = [r for r in rows if r["transaction_date"] <= end_date]
        if branch:
            rows = [r for r in rows if r.get("branch") == branch]
        return rows


class FakeCardClient:
    """Stands in for BillSpendClient in pipeline tests."""

    def __init__(self, records=None, users=None, custom_fields=None, fetch_error=None,
                 users_error=None, custom_fields_error=None):
        self.records = records or []
        self.users = USERS if users is None else users
        self.custom_fields = CUSTOM_FIELD_DEFINITIONS if custom_fields is None else custom_fields
        self.fetch_error = fetch_error
        self.users_error = users_error
        self.custom_fields_error = custom_fields_error
        self.fetch_calls: list[dict[str, Any]] = []

    def fetch_all_partitions(self, days_back, include_incomplete=True, historical=False):
        self.fetch_calls.append(
            {"days_back": days_back, "include_incomplete": include_incomplete, "historical": historical}
        )
        if self.fetch_error:
            raise self.fetch_error
        return list(self.records)

    def list_users(self):
        if self.users_error:
            raise self.users_error
        return self.users

    def list_custom_fields(self):
        if self.custom_fields_error:
            raise self.custom_fields_error
        return self.custom_fields


class FakeErpClient:
    def __init__(self, records=None, fetch_error=None):
        self.records = records or []
        self.fetch_error = fetch_error
        self.from_dates: list[date] = []

    def fetch_vendor_bills(self, from_date, vendor_cache=None):
        self.from_dates.append(from_date)
        if self.fetch_error:
            raise self.fetch_error
        return list(self.records)


def card_payload(
    transaction_id: str,
    amount: Any = 42.5,
    occurred: str = "2026-01-05T16:30:00.000+00:00",
    merchant: Optional[str] = "Home Depot",
    user_id: Optional[str] = "u1",
    branch: Optional[str] = None,
    department: Optional[str] = None,
    category: Optional[str] = None,
    memo: Optional[str] = None,
    budget_id: Optional[str] = None,
    complete: bool = True,
    transaction_type: str = "CLEAR",
    integration_state: Optional[str] = None,
) -> dict[str, Any]:
    """Build a card transaction payload as returned by /spend/transactions."""
    custom_fields = []
    if memo is not None:
        custom_fields.append({"customFieldUuid": "cf-notes", "note": memo, "selectedValues": []})
    if branch is not None:
        custom_fields.append({"customFieldUuid": "cf-branch", "selectedValues": [{"value": branch}]})
    if department is not None:
        custom_fields.append({"uuid": "cf-dept", "selectedValues": [{"value": department}]})
    if category is not None:
        custom_fields.append({"customFieldUuid": "cf-cat", "selectedValues": [{"value": category}]})

    payload = {
        "id": transaction_id,
        "amount": amount,
        "occurredTime": occurred,
        "merchantName": merchant,
        "userId": user_id,
        "customFields": custom_fields,
        "budgetId": budget_id,
        "complete": complete,
        "transactionType": transaction_type,
    }
    if integration_state is not None:
        payload["accountingIntegrationTransactions"] = [{"syncStatus": integration_state}]
    return payload


def card_record(transaction_id: str, known_state=None, **kwargs):
    return parse_transaction(card_payload(transaction_id, **kwargs), known_state)


@pytest.fixture
def config() -> SyncConfig:
    sync_config = load_config(environ={})
    sync_config.card_source.base_url = "https://gateway.test/v3"
    sync_config.card_source.api_token = "test-token"
    sync_config.card_source.routine.page_delay_seconds = 0
    sync_config.card_source.historical.page_delay_seconds = 0
    sync_config.erp_source.account_id = "1234567_SB1"
    sync_config.erp_source.consumer_key = "ck"
    sync_config.erp_source.consumer_secret = "cs"
    sync_config.erp_source.token_id = "tk"
    sync_config.erp_source.token_secret = "ts"
    return sync_config


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()
