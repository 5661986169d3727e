"""
Control package - entitlements and usage pricing reconciled against the ledger.

Flow:
- Catalog: publish plans of priced features (push), read them back (pull)
- Schedules: move each org's subscription schedule to a desired timeline
- Usage: report metered usage, read usage against limits
- Clocks: drive simulated time for test-mode billing
"""

from packages.control.client import ControlClient
from packages.control.clock_context import current_clock, with_clock

__all__ = [
    "ControlClient",
    "current_clock",
    "with_clock",
]
