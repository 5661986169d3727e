"""
Service for metered usage reporting and limit lookups.
"""

import asyncio
import secrets
from typing import Dict, List, Optional, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_delay,
    wait_exponential,
)

from common.core.config import settings
from common.core.telemetry import trace_span, get_logger
from packages.control.errors import FeatureNotFound, FeatureNotMetered, OrgNotFound
from packages.control.models.domain.phase import IMMEDIATE, Effective, ledger_time
from packages.control.models.domain.refs import FeaturePlan, Name
from packages.control.models.domain.usage import Report, Usage
from packages.control.pricing import feature_from_price
from packages.control.services.identity_service import IdentityService
from packages.control.services.schedule_service import ScheduleService
from packages.ledger.errors import LedgerError, is_transient
from packages.ledger.interface import LedgerInterface

logger = get_logger(__name__)


class UsageService:
    """Reports usage against an org's subscription and reads it back."""

    def __init__(
        self,
        ledger: LedgerInterface,
        identity: IdentityService,
        schedules: ScheduleService,
        timeout: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ):
        self.ledger = ledger
        self.identity = identity
        self.schedules = schedules
        self.timeout = timeout or settings.usage_report_timeout_seconds
        self.max_backoff = max_backoff or settings.usage_report_max_backoff_seconds

    @trace_span
    async def report_usage(
        self,
        org: str,
        feature: Union[Name, str],
        n: int,
        at: Effective = IMMEDIATE,
        clobber: bool = False,
    ) -> None:
        """
        Record n units of usage of feature for org.

        With clobber the recorded amount for the period becomes n; otherwise
        n is added to it. Transient ledger failures are retried with backoff
        until the report timeout elapses; one idempotency key covers every
        attempt of a single call.

        Raises:
            OrgNotFound: org has no customer
            FeatureNotFound: feature is not on org's subscription
            FeatureNotMetered: feature is licensed, not metered
            TimeoutError: the report did not complete in time
        """
        name = Name.parse(feature) if isinstance(feature, str) else feature

        features = await self.schedules.lookup_subscription_features(org)
        item = next((f for f in features if f.feature_plan.is_version_of(name)), None)
        if item is None:
            raise FeatureNotFound(f"feature not found: {str(name)!r}")
        if not item.is_metered:
            raise FeatureNotMetered(f"feature is not metered: {str(name)!r}")

        idempotency_key = secrets.token_hex(8)
        action = "set" if clobber else "increment"
        timestamp = ledger_time(at)

        async def post() -> None:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self.timeout),
                wait=wait_exponential(multiplier=0.05, max=self.max_backoff),
                retry=retry_if_exception(is_transient),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.debug(
                            "Retrying usage report",
                            extra={
                                "org": org,
                                "feature": str(name),
                                "attempt": attempt.retry_state.attempt_number,
                            },
                        )
                    await self.ledger.create_usage_record(
                        item.report_id,
                        quantity=n,
                        timestamp=timestamp,
                        action=action,
                        idempotency_key=idempotency_key,
                    )

        try:
            await asyncio.wait_for(post(), timeout=self.timeout)
        except LedgerError as e:
            logger.error(
                f"Failed to report usage: {str(e)}",
                extra={"org": org, "feature": str(name), "error": str(e)},
            )
            raise

    @trace_span
    async def report(self, org: str, feature: Union[Name, str], report: Report) -> None:
        await self.report_usage(
            org, feature, report.n, at=report.at, clobber=report.clobber
        )

    @trace_span
    async def lookup_limits(self, org: str) -> List[Usage]:
        """
        Usage and limit of each feature on org's upcoming invoice.

        Licensed features report zero usage. Returns an empty list when org
        has no customer or nothing upcoming.
        """
        try:
            customer_id = await self.identity.resolve(org)
        except OrgNotFound:
            return []

        try:
            lines = await self.ledger.list_upcoming_invoice_lines(customer_id)
        except LedgerError as e:
            if e.code == "invoice_upcoming_none":
                return []
            raise

        seen: Dict[FeaturePlan, Usage] = {}
        for line in lines:
            if line.price is None:
                continue
            f = feature_from_price(line.price)
            if f is None:
                continue
            used = (line.quantity or 0) if f.is_metered else 0
            prev = seen.get(f.feature_plan)
            if prev is None or prev.used <= used:
                seen[f.feature_plan] = Usage(
                    feature=f.feature_plan,
                    start=line.period.start if line.period else None,
                    end=line.period.end if line.period else None,
                    used=used,
                    limit=f.limit,
                )
        return sorted(seen.values(), key=lambda u: u.feature)
