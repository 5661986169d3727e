"""
Service reconciling an org's desired entitlement timeline with ledger
subscription schedules.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from common.core.constants import MAX_PHASE_ITEMS
from common.core.telemetry import trace_span, get_logger
from packages.control.errors import (
    InvalidPhase,
    OrgNotFound,
    TooManyItems,
    UnexpectedMissingOrg,
)
from packages.control.ids import DEFAULT_SCHEDULE_NAME, META_SUBSCRIPTION
from packages.control.models.domain.enums import EndBehavior, SubscriptionStatus
from packages.control.models.domain.feature import Feature
from packages.control.models.domain.phase import At, OrgInfo, Phase, ledger_time
from packages.control.models.domain.refs import FeaturePlan, Plan
from packages.control.pricing import feature_from_price
from packages.control.services.catalog_service import CatalogService
from packages.control.services.identity_service import IdentityService
from packages.ledger.errors import LedgerError, is_schedule_released, is_too_many_items
from packages.ledger.interface import LedgerInterface
from packages.ledger.models import LedgerSchedule, LedgerSubscription

logger = get_logger(__name__)

# Schedule statuses after which the schedule no longer governs its subscription.
_FINISHED_SCHEDULE_STATUSES = ("released", "canceled", "completed")


@dataclass
class _PhaseSpec:
    """A phase as sent to the ledger."""

    start: Union[str, int]  # "now" or unix seconds
    prices: List[str] = field(default_factory=list)
    trial: bool = False

    @property
    def is_cancel(self) -> bool:
        return not self.prices


def validate_phases(phases: List[Phase]) -> None:
    """
    Check a desired timeline before anything is sent to the ledger.

    Raises:
        InvalidPhase: empty timeline, misplaced cancellation, or bad ordering
        TooManyItems: a phase has more items than a schedule phase allows
    """
    if not phases:
        raise InvalidPhase("at least one phase is required")
    last_at = None
    for i, p in enumerate(phases):
        if len(p.features) > MAX_PHASE_ITEMS:
            raise TooManyItems(
                f"phase {i} has {len(p.features)} features; at most "
                f"{MAX_PHASE_ITEMS} are allowed"
            )
        if p.is_cancel and i != len(phases) - 1:
            raise InvalidPhase(f"phase {i}: only the last phase may have no features")
        if i > 0 and p.is_immediate:
            raise InvalidPhase(f"phase {i}: only the first phase may be immediate")
        if isinstance(p.effective, At):
            if last_at is not None and p.effective.time <= last_at:
                raise InvalidPhase(f"phase {i}: phases must be in effective order")
            last_at = p.effective.time


def plans_in_phase(features: List[FeaturePlan], plan_sizes: Dict[Plan, int]) -> List[Plan]:
    """
    Plans whose every published feature is in features.

    A plan counts as present when the number of its features in the phase
    equals the number published in the catalog.
    """
    in_phase = Counter(f.plan for f in features)
    plans: List[Plan] = []
    for f in features:
        plan = f.plan
        if plan.is_zero or plan in plans:
            continue
        if in_phase[plan] == plan_sizes.get(plan, 0):
            plans.append(plan)
    return plans


class ScheduleService:
    """
    Drives each org's ledger subscription schedule toward a desired timeline.

    Concurrent calls for the same org are not serialized here; the ledger's
    own consistency checks are relied upon, and the one expected conflict
    (a schedule released between read and write) is retried.
    """

    def __init__(
        self,
        ledger: LedgerInterface,
        identity: IdentityService,
        catalog: CatalogService,
        schedule_name: str = DEFAULT_SCHEDULE_NAME,
    ):
        self.ledger = ledger
        self.identity = identity
        self.catalog = catalog
        self.schedule_name = schedule_name

    # Writes

    @trace_span
    async def schedule(
        self, org: str, phases: List[Phase], info: Optional[OrgInfo] = None
    ) -> None:
        """
        Make org's entitlement timeline match phases.

        The first phase may be immediate, in which case it replaces the
        org's current phase; otherwise the current phase is kept and the
        given phases follow it. A final phase without features cancels the
        subscription at its effective time, or right away when it is the
        only, immediate phase.

        Raises:
            InvalidPhase, TooManyItems: malformed phases (nothing is sent)
            FeatureNotFound: a feature is not published (nothing is changed)
            UnexpectedMissingOrg: the ledger lost the org's customer
        """
        validate_phases(phases)
        try:
            await self._schedule(org, phases, info)
        except LedgerError as e:
            if e.code == "resource_missing" and e.param == "customer":
                raise UnexpectedMissingOrg() from e
            if is_too_many_items(e):
                raise TooManyItems() from e
            logger.error(
                f"Failed to schedule org: {str(e)}",
                extra={"org": org, "phases": len(phases), "error": str(e)},
            )
            raise

    async def _schedule(
        self, org: str, phases: List[Phase], info: Optional[OrgInfo]
    ) -> None:
        resolved = await self._resolve_phases(phases)

        if info is not None:
            await self.identity.ensure(org, info)

        cancel_only = phases[0].is_cancel

        try:
            customer_id = await self.identity.resolve(org)
        except OrgNotFound:
            if cancel_only:
                logger.info("Nothing to cancel, org has no customer", extra={"org": org})
                return
            customer_id = await self.identity.ensure(org, info)
            subscription = None
        else:
            subscription = await self._lookup_subscription(customer_id)

        if subscription is None:
            if cancel_only:
                logger.info(
                    "Nothing to cancel, org has no subscription", extra={"org": org}
                )
                return
            await self._create_schedule(org, customer_id, phases, resolved)
            return

        if cancel_only and phases[0].is_immediate:
            await self.ledger.cancel_subscription(
                subscription.id, prorate=True, invoice_now=True
            )
            logger.info(
                "Cancelled subscription",
                extra={"org": org, "subscription_id": subscription.id},
            )
            return

        schedule = await self._schedule_of(subscription)
        if schedule is None:
            # a schedule created from a subscription cannot carry phase data
            # or metadata, so it is always followed by an update
            schedule = await self.ledger.create_schedule_from_subscription(
                subscription.id
            )

        try:
            await self._update_schedule(schedule, phases, resolved)
        except LedgerError as e:
            if not is_schedule_released(e):
                raise
            logger.warning(
                "Schedule released before update, taking over subscription again",
                extra={"org": org, "schedule_id": schedule.id},
            )
            schedule = await self.ledger.create_schedule_from_subscription(
                subscription.id
            )
            await self._update_schedule(schedule, phases, resolved)

    async def _resolve_phases(self, phases: List[Phase]) -> List[List[str]]:
        """Ledger price ids for each phase (empty for a cancellation)."""

        async def resolve(p: Phase) -> List[str]:
            if p.is_cancel:
                return []
            features = await self.catalog.lookup_features(p.features)
            return [f.provider_id for f in features]

        return list(await asyncio.gather(*(resolve(p) for p in phases)))

    def _phase_params(self, specs: List[_PhaseSpec], set_first_start: bool) -> Dict[str, Any]:
        phases = []
        for i, spec in enumerate(specs):
            if spec.is_cancel:
                break
            params: Dict[str, Any] = {"items": [{"price": p} for p in spec.prices]}
            if i == 0 and set_first_start:
                params["start_date"] = spec.start
            if i + 1 < len(specs):
                params["end_date"] = specs[i + 1].start
            if spec.trial:
                params["trial"] = True
            phases.append(params)

        end_behavior = EndBehavior.CANCEL if specs[-1].is_cancel else EndBehavior.RELEASE
        return {
            "phases": phases,
            "end_behavior": end_behavior.value,
            "metadata": {META_SUBSCRIPTION: self.schedule_name},
        }

    async def _create_schedule(
        self,
        org: str,
        customer_id: str,
        phases: List[Phase],
        resolved: List[List[str]],
    ) -> None:
        specs = [
            _PhaseSpec(start=ledger_time(p.effective), prices=prices, trial=p.trial)
            for p, prices in zip(phases, resolved)
        ]
        params = self._phase_params(specs, set_first_start=False)
        params["customer"] = customer_id
        params["start_date"] = specs[0].start
        schedule = await self.ledger.create_schedule(params)
        logger.info(
            "Created schedule",
            extra={"org": org, "schedule_id": schedule.id, "phases": len(phases)},
        )

    async def _update_schedule(
        self,
        schedule: LedgerSchedule,
        phases: List[Phase],
        resolved: List[List[str]],
    ) -> None:
        desired = [
            _PhaseSpec(start=ledger_time(p.effective), prices=prices, trial=p.trial)
            for p, prices in zip(phases, resolved)
        ]

        current = _current_ledger_phase(schedule)
        if current is not None:
            start = int(current.start_date.timestamp())
            if phases[0].is_immediate:
                # replace the running phase in place, keeping its start
                desired[0].start = start
            else:
                kept = _PhaseSpec(
                    start=start,
                    prices=[item.price_id for item in current.items],
                    trial=current.trial_end is not None,
                )
                desired.insert(0, kept)

        params = self._phase_params(desired, set_first_start=True)
        await self.ledger.update_schedule(schedule.id, params)
        logger.info(
            "Updated schedule",
            extra={"schedule_id": schedule.id, "phases": len(params["phases"])},
        )

    @trace_span
    async def schedule_now(
        self, org: str, phases: List[Phase], info: Optional[OrgInfo] = None
    ) -> None:
        """Like schedule, but the first phase must take effect immediately."""
        if phases and not phases[0].is_immediate:
            raise InvalidPhase("first phase must be effective immediately")
        await self.schedule(org, phases, info)

    @trace_span
    async def subscribe_to(self, org: str, features: List[FeaturePlan]) -> None:
        """Entitle org to exactly features, starting now."""
        await self.schedule_now(org, [Phase(features=features)])

    @trace_span
    async def subscribe_to_refs(self, org: str, *refs: str) -> None:
        """Entitle org to the plans and features named by refs, starting now."""
        await self.subscribe_to(org, await self.catalog.expand_refs(*refs))

    @trace_span
    async def cancel(self, org: str) -> None:
        """Cancel org's subscription now, with proration."""
        await self.schedule(org, [Phase(features=[])])

    # Reads

    async def _lookup_subscription(
        self, customer_id: str, include_ended: bool = False
    ) -> Optional[LedgerSubscription]:
        """
        The subscription this service manages for a customer.

        Prefers the live subscription carrying our named schedule, then any
        other live subscription, then (if include_ended) the most recent
        ended one.
        """
        subscriptions = await self.ledger.list_subscriptions(
            customer_id, expand=["data.schedule"]
        )
        live = [s for s in subscriptions if not _is_ended(s)]
        for s in live:
            if (
                isinstance(s.schedule, LedgerSchedule)
                and s.schedule.metadata.get(META_SUBSCRIPTION) == self.schedule_name
            ):
                return s
        if live:
            return live[0]
        if include_ended and subscriptions:
            return subscriptions[0]
        return None

    async def _schedule_of(
        self, subscription: LedgerSubscription
    ) -> Optional[LedgerSchedule]:
        schedule = subscription.schedule
        if schedule is None:
            return None
        if isinstance(schedule, str):
            schedule = await self.ledger.retrieve_schedule(schedule)
        if schedule.status in _FINISHED_SCHEDULE_STATUSES:
            return None
        return schedule

    @trace_span
    async def lookup_subscription_features(self, org: str) -> List[Feature]:
        """
        Features on org's subscription, with report ids set.

        Raises:
            OrgNotFound: org has no customer
        """
        customer_id = await self.identity.resolve(org)
        subscription = await self._lookup_subscription(customer_id)
        if subscription is None:
            return []
        features = []
        for item in subscription.items:
            f = feature_from_price(item.price)
            if f is not None:
                features.append(f.model_copy(update={"report_id": item.id}))
        return features

    @trace_span
    async def lookup_status(self, org: str) -> str:
        """Status of org's subscription, or "" if it has none."""
        try:
            customer_id = await self.identity.resolve(org)
        except OrgNotFound:
            return ""
        subscription = await self._lookup_subscription(customer_id, include_ended=True)
        return subscription.status if subscription else ""

    @trace_span
    async def lookup_phases(self, org: str) -> List[Phase]:
        """
        Reconstruct org's timeline from the ledger, ordered by effective time.

        Returns an empty list when org has no customer or no subscription.
        """
        try:
            customer_id = await self.identity.resolve(org)
        except OrgNotFound:
            return []

        subscription, catalog = await asyncio.gather(
            self._lookup_subscription(customer_id, include_ended=True),
            self.catalog.pull(),
        )
        if subscription is None:
            return []

        by_provider_id = {f.provider_id: f.feature_plan for f in catalog}
        plan_sizes = Counter(f.plan for f in catalog)

        schedule = await self._schedule_of(subscription)
        if schedule is not None:
            phases = _phases_from_schedule(org, schedule, by_provider_id)
        else:
            phases = _phases_from_subscription(org, subscription, by_provider_id)

        for p in phases:
            p.plans = plans_in_phase(p.features, plan_sizes)

        phases.sort(key=lambda p: p.effective.time)
        return phases


def _is_ended(subscription: LedgerSubscription) -> bool:
    try:
        return SubscriptionStatus(subscription.status).is_ended()
    except ValueError:
        return False


def _current_ledger_phase(schedule: LedgerSchedule):
    if schedule.current_phase is None:
        return None
    for p in schedule.phases:
        if p.start_date == schedule.current_phase.start_date:
            return p
    return None


def _phases_from_schedule(
    org: str, schedule: LedgerSchedule, by_provider_id: Dict[str, FeaturePlan]
) -> List[Phase]:
    current_start = schedule.current_phase.start_date if schedule.current_phase else None
    phases = []
    for p in schedule.phases:
        features = []
        for item in p.items:
            fp = by_provider_id.get(item.price_id)
            if fp is None:
                logger.debug(
                    "Skipping schedule item outside the catalog",
                    extra={"org": org, "price_id": item.price_id},
                )
                continue
            features.append(fp)
        phases.append(
            Phase(
                org=org,
                effective=At(p.start_date),
                features=features,
                trial=p.trial_end is not None,
                current=p.start_date == current_start,
            )
        )

    if (
        schedule.end_behavior == EndBehavior.CANCEL.value
        and schedule.phases
        and schedule.phases[-1].end_date is not None
    ):
        phases.append(
            Phase(org=org, effective=At(schedule.phases[-1].end_date), features=[])
        )
    return phases


def _phases_from_subscription(
    org: str,
    subscription: LedgerSubscription,
    by_provider_id: Dict[str, FeaturePlan],
) -> List[Phase]:
    features = []
    for item in subscription.items:
        fp = by_provider_id.get(item.price.id)
        if fp is None:
            decoded = feature_from_price(item.price)
            if decoded is None:
                continue
            fp = decoded.feature_plan
        features.append(fp)

    start = subscription.start_date
    if start is None:
        return []

    phases: List[Phase] = []
    trial = post_trial = None
    if subscription.trial_end is not None and subscription.trial_end > start:
        trial = Phase(org=org, effective=At(start), features=features, trial=True)
        post_trial = Phase(
            org=org, effective=At(subscription.trial_end), features=list(features)
        )
        phases.extend([trial, post_trial])
    else:
        phases.append(Phase(org=org, effective=At(start), features=features))

    status = subscription.status
    if status == SubscriptionStatus.CANCELED.value:
        end = subscription.canceled_at or subscription.cancel_at
    else:
        end = subscription.cancel_at
    cancel = None
    if end is not None:
        cancel = Phase(org=org, effective=At(end), features=[])
        phases.append(cancel)

    if status == SubscriptionStatus.CANCELED.value:
        current = cancel or phases[-1]
    elif status == SubscriptionStatus.TRIALING.value and trial is not None:
        current = trial
    elif post_trial is not None:
        current = post_trial
    else:
        current = phases[0]
    current.current = True
    return phases
