"""
Domain models for catalog entries ("features").
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.control.ids import make_id
from packages.control.models.domain.enums import Aggregate, Interval, Mode
from packages.control.models.domain.refs import FeaturePlan, Name, Plan

# Sentinel for an unbounded tier or limit.
INF = (1 << 63) - 1


class Tier(BaseModel):
    """One pricing tier. Tiers are ordered ascending by upto."""

    model_config = ConfigDict(frozen=True)

    upto: int = INF  # upper limit of the tier, inclusive
    price: float = 0  # unit price, may be fractional
    base: int = 0  # flat amount charged once the tier is entered


class Feature(BaseModel):
    """
    A published, immutable priced entitlement (feature in a plan).

    A feature without tiers is licensed and billed at `base` every interval.
    A feature with tiers is metered: usage is aggregated with `aggregate`
    and priced by `tiers` under `mode`.
    """

    feature_plan: FeaturePlan

    provider_id: str = ""  # set by the ledger
    plan_title: str = ""
    title: str = ""

    interval: Interval = Interval.MONTHLY
    currency: str = "usd"

    base: float = 0
    mode: Mode = Mode.GRADUATED
    aggregate: Optional[Aggregate] = None
    tiers: List[Tier] = Field(default_factory=list)

    # Subscription item id for usage reports; set on subscription reads.
    report_id: str = ""

    transform_denominator: int = 0
    transform_round_up: bool = False

    tax_included: bool = False

    @property
    def name(self) -> Name:
        return self.feature_plan.name

    @property
    def plan(self) -> Plan:
        return self.feature_plan.plan

    @property
    def id(self) -> str:
        """Ledger id (and lookup key) for this feature."""
        return make_id(str(self.feature_plan))

    @property
    def is_metered(self) -> bool:
        # not every ledger response carries tiers, but all carry the
        # aggregate, which is unset for licensed prices
        return self.aggregate is not None

    @property
    def limit(self) -> int:
        if not self.tiers:
            return INF
        return self.tiers[-1].upto

    def in_plan(self, plan: Plan) -> bool:
        return self.feature_plan.in_plan(plan)

    def __str__(self) -> str:
        return str(self.feature_plan)


def feature_plans(features: List[Feature]) -> List[FeaturePlan]:
    return [f.feature_plan for f in features]
