"""
Ledger package - typed async access to the remote billing ledger.

This package integrates with:
- Stripe: customers, prices, subscription schedules, usage records, test clocks
"""

from packages.ledger.errors import (
    InvalidAPIKey,
    LedgerConnectionError,
    LedgerError,
    is_exists,
    is_not_found,
    is_schedule_released,
    is_too_many_items,
    is_transient,
)
from packages.ledger.factory import get_ledger
from packages.ledger.interface import LedgerInterface
from packages.ledger.stripe_ledger import StripeLedger

__all__ = [
    "InvalidAPIKey",
    "LedgerConnectionError",
    "LedgerError",
    "LedgerInterface",
    "StripeLedger",
    "get_ledger",
    "is_exists",
    "is_not_found",
    "is_schedule_released",
    "is_too_many_items",
    "is_transient",
]
