"""Reconciliation of fetched records into the ledger."""

from .engine import ReconciliationEngine, parse_transaction_date, resolve_sync_status
from .merge import dedupe_partitions, merge_preferring_non_null

__all__ = [
    "ReconciliationEngine",
    "parse_transaction_date",
    "resolve_sync_status",
    "dedupe_partitions",
    "merge_preferring_non_null",
]
