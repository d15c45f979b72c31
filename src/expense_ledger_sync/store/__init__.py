"""Ledger persistence."""

from .ledger import LedgerStore, SupabaseLedgerStore

__all__ = ["LedgerStore", "SupabaseLedgerStore"]
