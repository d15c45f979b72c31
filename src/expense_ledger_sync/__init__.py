"""Expense ledger sync: reconciles card transactions and vendor bills into one ledger."""

__version__ = "0.1.0"
