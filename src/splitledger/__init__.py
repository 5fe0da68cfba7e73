"""Shared-expense ledger: splits, settlements and balances in integer cents."""

__version__ = "0.1.0"
