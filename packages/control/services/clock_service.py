"""
Service for simulated (test) clocks.

The ledger applies clock advances asynchronously: invoices, trial ends
and renewals due before the new time are produced in the background.
Callers must wait_until_ready after advance before asserting on billing
state.
"""

from datetime import datetime
from typing import Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    retry_if_result,
    stop_after_delay,
    stop_never,
    wait_exponential,
)

from common.core.config import settings
from common.core.telemetry import trace_span, get_logger, log_span_event
from packages.control.errors import ClockFailed
from packages.control.models.domain.clock import Clock
from packages.ledger.errors import is_transient
from packages.ledger.interface import LedgerInterface
from packages.ledger.models import LedgerTestClock

logger = get_logger(__name__)


class ClockService:
    """Creates, advances and polls simulated clocks."""

    def __init__(self, ledger: LedgerInterface, max_backoff: Optional[float] = None):
        self.ledger = ledger
        self.max_backoff = max_backoff or settings.clock_wait_max_backoff_seconds

    def link(self, clock_id: str) -> str:
        """Dashboard URL for a clock."""
        parts = [settings.stripe_dashboard_url]
        if self.ledger.account_id:
            parts.append(self.ledger.account_id)
        if not self.ledger.live:
            parts.append("test")
        parts.extend(["billing", "subscriptions", "test-clocks", clock_id])
        return "/".join(parts)

    def _to_clock(self, c: LedgerTestClock) -> Clock:
        return Clock(
            id=c.id,
            name=c.name or "",
            status=c.status,
            present=c.frozen_time,
            link=self.link(c.id),
        )

    @trace_span
    async def create(self, name: str, start: datetime) -> Clock:
        """Create a clock frozen at start (truncated to whole seconds)."""
        clock = await self.ledger.create_test_clock(name, start.replace(microsecond=0))
        logger.info(
            "Created test clock",
            extra={"clock_id": clock.id, "clock_name": name, "start": start.isoformat()},
        )
        return self._to_clock(clock)

    @trace_span
    async def advance(self, clock_id: str, to: datetime) -> Clock:
        """Start moving the clock to `to`. The clock is not ready on return."""
        clock = await self.ledger.advance_test_clock(clock_id, to.replace(microsecond=0))
        log_span_event(
            "Advancing test clock", {"clock_id": clock_id, "to": to.isoformat()}
        )
        return self._to_clock(clock)

    @trace_span
    async def sync(self, clock_id: str) -> Clock:
        """Fetch the clock's current status and time."""
        return self._to_clock(await self.ledger.retrieve_test_clock(clock_id))

    @trace_span
    async def wait_until_ready(
        self, clock_id: str, timeout: Optional[float] = None
    ) -> Clock:
        """
        Poll until the ledger reports the clock ready.

        Backs off exponentially between polls, up to the configured maximum.

        Raises:
            ClockFailed: the ledger reported the advance failed
            TimeoutError: the clock was not ready within timeout seconds
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(timeout) if timeout else stop_never,
                wait=wait_exponential(multiplier=0.1, max=self.max_backoff),
                retry=(
                    retry_if_result(lambda c: c.status == "advancing")
                    | retry_if_exception(is_transient)
                ),
                reraise=True,
            ):
                with attempt:
                    clock = await self.sync(clock_id)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(clock)
        except RetryError as e:
            raise TimeoutError(f"test clock {clock_id} not ready after {timeout}s") from e

        if clock.status != "ready":
            raise ClockFailed(f"test clock {clock_id} status {clock.status!r}")
        return clock
