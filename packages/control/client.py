"""
Control plane client: the single entry point composing the services.
"""

from datetime import datetime
from typing import List, Optional, Union

from common.core.config import Settings, settings as default_settings
from common.core.telemetry import get_logger
from common.providers.caching import MemoLoader
from packages.control.models.domain.account import Account
from packages.control.models.domain.clock import Clock
from packages.control.models.domain.feature import Feature
from packages.control.models.domain.phase import IMMEDIATE, Effective, Org, OrgInfo, Phase
from packages.control.models.domain.refs import FeaturePlan, Name
from packages.control.models.domain.usage import PushResult, Usage
from packages.control.services.catalog_service import CatalogService, PushCallback
from packages.control.services.clock_service import ClockService
from packages.control.services.identity_service import IdentityService
from packages.control.services.schedule_service import ScheduleService
from packages.control.services.usage_service import UsageService
from packages.ledger.factory import get_ledger
from packages.ledger.interface import LedgerInterface

logger = get_logger(__name__)


class ControlClient:
    """
    Entitlement and usage-pricing control plane over a ledger.

    Each client owns its org identity cache; nothing is shared between
    clients. Construct with an explicit ledger, or use from_settings.

    Usage:
        client = ControlClient(ledger=get_ledger())
        await client.push(Catalog.model_validate(doc).to_features())
        await client.subscribe_to_refs("org:acme", "plan:pro@1")
        await client.report_usage("org:acme", "feature:requests", 10)
    """

    def __init__(
        self,
        ledger: LedgerInterface,
        org_cache_size: Optional[int] = None,
        push_max_workers: Optional[int] = None,
        key_source: str = "",
    ):
        self.ledger = ledger
        self.key_source = key_source
        self.identity = IdentityService(
            ledger,
            cache=MemoLoader(
                capacity=org_cache_size or default_settings.org_cache_size
            ),
        )
        self.catalog = CatalogService(ledger, max_workers=push_max_workers)
        self.schedules = ScheduleService(ledger, self.identity, self.catalog)
        self.usage = UsageService(ledger, self.identity, self.schedules)
        self.clocks = ClockService(ledger)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ControlClient":
        settings = settings or default_settings
        return cls(
            ledger=get_ledger(settings),
            org_cache_size=settings.org_cache_size,
            key_source="STRIPE_SECRET_KEY",
        )

    @property
    def live(self) -> bool:
        return self.ledger.live

    @property
    def isolated(self) -> bool:
        """True when requests are scoped to a connected account."""
        return bool(self.ledger.account_id)

    async def whoami(self) -> Account:
        """The ledger account this client operates on."""
        a = await self.ledger.retrieve_account()
        return Account(
            id=a.id,
            email=a.email or "",
            created=a.created,
            key_source=self.key_source,
            isolated=self.isolated,
        )

    # Orgs

    async def whois(self, org: str) -> str:
        return await self.identity.resolve(org)

    async def put_customer(self, org: str, info: Optional[OrgInfo] = None) -> str:
        return await self.identity.ensure(org, info)

    async def lookup_org(self, org: str) -> OrgInfo:
        return await self.identity.lookup_org(org)

    async def list_orgs(self) -> List[Org]:
        return await self.identity.list_orgs()

    # Catalog

    async def push(
        self, features: List[Feature], on_result: Optional[PushCallback] = None
    ) -> List[PushResult]:
        return await self.catalog.push(features, on_result)

    async def pull(self) -> List[Feature]:
        return await self.catalog.pull()

    async def lookup_features(self, refs: List[FeaturePlan]) -> List[Feature]:
        return await self.catalog.lookup_features(refs)

    # Schedules

    async def schedule(
        self, org: str, phases: List[Phase], info: Optional[OrgInfo] = None
    ) -> None:
        await self.schedules.schedule(org, phases, info)

    async def schedule_now(
        self, org: str, phases: List[Phase], info: Optional[OrgInfo] = None
    ) -> None:
        await self.schedules.schedule_now(org, phases, info)

    async def subscribe_to(self, org: str, features: List[FeaturePlan]) -> None:
        await self.schedules.subscribe_to(org, features)

    async def subscribe_to_refs(self, org: str, *refs: str) -> None:
        await self.schedules.subscribe_to_refs(org, *refs)

    async def cancel(self, org: str) -> None:
        await self.schedules.cancel(org)

    async def lookup_phases(self, org: str) -> List[Phase]:
        return await self.schedules.lookup_phases(org)

    async def lookup_status(self, org: str) -> str:
        return await self.schedules.lookup_status(org)

    # Usage

    async def report_usage(
        self,
        org: str,
        feature: Union[Name, str],
        n: int,
        at: Effective = IMMEDIATE,
        clobber: bool = False,
    ) -> None:
        await self.usage.report_usage(org, feature, n, at=at, clobber=clobber)

    async def lookup_limits(self, org: str) -> List[Usage]:
        return await self.usage.lookup_limits(org)

    # Simulated clocks

    async def create_clock(self, name: str, start: datetime) -> Clock:
        return await self.clocks.create(name, start)

    async def advance_clock(self, clock_id: str, to: datetime) -> Clock:
        return await self.clocks.advance(clock_id, to)

    async def sync_clock(self, clock_id: str) -> Clock:
        return await self.clocks.sync(clock_id)

    async def wait_clock_ready(
        self, clock_id: str, timeout: Optional[float] = None
    ) -> Clock:
        return await self.clocks.wait_until_ready(clock_id, timeout)
