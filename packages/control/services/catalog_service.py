"""
Service publishing the pricing catalog to the ledger and reading it back.
"""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional

from common.core.constants import LOOKUP_BATCH_SIZE
from common.core.config import settings
from common.core.exceptions import ValidationError
from common.core.telemetry import trace_span, get_logger
from packages.control.errors import FeatureExists, FeatureNotFound, NoFeatures, PlanExists
from packages.control.ids import make_id
from packages.control.models.domain.enums import PushStatus
from packages.control.models.domain.feature import Feature, feature_plans
from packages.control.models.domain.refs import FeaturePlan, Plan, RefParseError
from packages.control.models.domain.usage import PushResult
from packages.control.pricing import feature_from_price, price_params, validate_feature
from packages.ledger.errors import is_exists
from packages.ledger.interface import LedgerInterface

logger = get_logger(__name__)

PushCallback = Callable[[PushResult], None]


def expand_plans(features: List[Feature], *refs: str) -> List[Feature]:
    """
    Resolve refs against the catalog.

    A plan ref ("plan:free@0") expands to every feature in the plan; a
    feature ref ("feature:x@plan:free@0") selects that one feature.

    Raises:
        RefParseError: a ref is neither a plan nor a feature plan
        NoFeatures: a ref matched nothing in features
    """
    out: List[Feature] = []
    for ref in refs:
        try:
            fp = FeaturePlan.parse(ref)
        except RefParseError:
            plan = Plan.parse(ref)
            matched = [f for f in features if f.in_plan(plan)]
            if not matched:
                raise NoFeatures(f"no features found for plan {str(plan)!r}")
            out.extend(matched)
            continue
        for f in features:
            if f.feature_plan == fp:
                out.append(f)
                break
        else:
            raise NoFeatures(f"no features found named {str(fp)!r}")
    return out


def expand(features: List[Feature], *refs: str) -> List[FeaturePlan]:
    return feature_plans(expand_plans(features, *refs))


class CatalogService:
    """Publishes (push) and reads (pull) catalog entries."""

    def __init__(self, ledger: LedgerInterface, max_workers: Optional[int] = None):
        self.ledger = ledger
        self.max_workers = max_workers or settings.push_max_workers(ledger.live)

    @trace_span
    async def push(
        self, features: List[Feature], on_result: Optional[PushCallback] = None
    ) -> List[PushResult]:
        """
        Publish each feature as a ledger price.

        Features are grouped by plan. Each plan is claimed by creating an
        inactive sentinel product whose id derives from the plan; if the
        plan was claimed before, every feature in it is reported as
        plan_exists and nothing in that plan is published. Plans are
        independent of each other.

        Every feature is validated before any ledger request. A validation
        failure is reported through on_result and raised.

        Args:
            features: Catalog entries to publish
            on_result: Called once per feature as its outcome is known

        Returns:
            One PushResult per feature, in input order
        """

        def report(result: PushResult) -> PushResult:
            if on_result is not None:
                on_result(result)
            return result

        for f in features:
            try:
                validate_feature(f)
            except ValidationError as e:
                report(PushResult(feature=f, status=PushStatus.INVALID, error=e))
                raise

        semaphore = asyncio.Semaphore(self.max_workers)
        sentinels: Dict[Plan, asyncio.Task] = {}

        async def claim(plan: Plan) -> None:
            async with semaphore:
                await self._push_sentinel(plan)

        def sentinel(plan: Plan) -> asyncio.Task:
            task = sentinels.get(plan)
            if task is None:
                task = asyncio.ensure_future(claim(plan))
                sentinels[plan] = task
            return task

        async def push_one(f: Feature) -> PushResult:
            try:
                if not f.plan.is_zero:
                    await asyncio.shield(sentinel(f.plan))
                async with semaphore:
                    provider_id = await self._push_feature(f)
            except PlanExists as e:
                return report(PushResult(feature=f, status=PushStatus.PLAN_EXISTS, error=e))
            except FeatureExists as e:
                return report(
                    PushResult(feature=f, status=PushStatus.FEATURE_EXISTS, error=e)
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to push feature: {str(e)}",
                    extra={"feature": str(f), "plan": str(f.plan), "error": str(e)},
                )
                return report(PushResult(feature=f, status=PushStatus.FAILED, error=e))

            pushed = f.model_copy(update={"provider_id": provider_id})
            return report(PushResult(feature=pushed, status=PushStatus.OK))

        results = await asyncio.gather(*(push_one(f) for f in features))

        logger.info(
            "Pushed catalog",
            extra={
                "features": len(features),
                "plans": len(sentinels),
                "ok": sum(1 for r in results if r.status == PushStatus.OK),
            },
        )
        return list(results)

    async def _push_sentinel(self, plan: Plan) -> None:
        try:
            await self.ledger.create_product(
                {
                    "id": make_id(str(plan)),
                    "name": str(plan),
                    # keep sentinels out of sight and unusable in the dashboard
                    "active": False,
                }
            )
        except Exception as e:
            if is_exists(e):
                raise PlanExists(f"plan already exists: {str(plan)!r}") from e
            raise

    async def _push_feature(self, f: Feature) -> str:
        logger.debug("Pushing feature", extra={"feature": str(f), "id": f.id})
        try:
            price = await self.ledger.create_price(price_params(f))
        except Exception as e:
            if is_exists(e):
                raise FeatureExists(f"feature already exists: {str(f)!r}") from e
            raise
        return price.id

    @trace_span
    async def pull(self) -> List[Feature]:
        """Every catalog entry published on the ledger."""
        # Full scan: catalog entries are recognized by price metadata, which the
        # ledger cannot filter on, and plan detection needs every entry of a plan.
        prices = await self.ledger.list_prices(expand=["data.product", "data.tiers"])
        features = []
        for price in prices:
            f = feature_from_price(price)
            if f is not None:
                features.append(f)
        return features

    @trace_span
    async def lookup_features(self, refs: Iterable[FeaturePlan]) -> List[Feature]:
        """
        Resolve feature plans to published catalog entries, in request order.

        Raises:
            FeatureNotFound: any ref is not published
        """
        wanted: List[FeaturePlan] = list(dict.fromkeys(refs))
        if not wanted:
            raise ValidationError("no features provided")

        by_key: Dict[str, Feature] = {}
        for i in range(0, len(wanted), LOOKUP_BATCH_SIZE):
            batch = wanted[i : i + LOOKUP_BATCH_SIZE]
            prices = await self.ledger.list_prices(
                lookup_keys=[make_id(str(fp)) for fp in batch],
                expand=["data.tiers"],
            )
            for price in prices:
                f = feature_from_price(price)
                if f is not None and price.lookup_key:
                    by_key[price.lookup_key] = f

        missing = [fp for fp in wanted if make_id(str(fp)) not in by_key]
        if missing:
            raise FeatureNotFound(
                "feature not found: " + ", ".join(str(fp) for fp in missing)
            )
        return [by_key[make_id(str(fp))] for fp in wanted]

    @trace_span
    async def expand_refs(self, *refs: str) -> List[FeaturePlan]:
        """Expand plan and feature refs against the published catalog."""
        return expand(await self.pull(), *refs)
