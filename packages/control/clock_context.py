"""
Simulated clock scoping.

Operations performed inside `with_clock(clock_id)` attach newly created
customers to that clock and resolve orgs in a cache partition of their own,
so simulated orgs never collide with real ones.

Usage:
    with with_clock(clock.id):
        await client.schedule("org:test", phases)
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_current_clock: ContextVar[Optional[str]] = ContextVar("ledger_test_clock", default=None)


def current_clock() -> Optional[str]:
    """The clock id active in this context, if any."""
    return _current_clock.get()


@contextmanager
def with_clock(clock_id: Optional[str]) -> Iterator[Optional[str]]:
    token = _current_clock.set(clock_id)
    try:
        yield clock_id
    finally:
        _current_clock.reset(token)
