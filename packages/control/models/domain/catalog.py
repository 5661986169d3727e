"""
Declarative pricing catalog.

The decoded form of a pricing file:

    {
        "plans": {
            "plan:free@0": {
                "title": "Free",
                "currency": "usd",
                "interval": "@monthly",
                "features": {
                    "feature:seats": {"base": 0},
                    "feature:requests": {
                        "aggregate": "sum",
                        "tiers": [{"upto": 100, "price": 0}, {"price": 0.01}],
                        "divide": {"by": 1000, "rounding": "up"}
                    }
                }
            }
        }
    }

An omitted or zero `upto` means no limit.
"""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from packages.control.models.domain.enums import Aggregate, Interval, Mode
from packages.control.models.domain.feature import INF, Feature, Tier
from packages.control.models.domain.refs import Name, Plan


class DivideSpec(BaseModel):
    by: int
    rounding: Literal["up", "down"] = "up"


class TierSpec(BaseModel):
    upto: int = 0
    price: float = 0
    base: int = 0

    def to_tier(self) -> Tier:
        return Tier(upto=self.upto or INF, price=self.price, base=self.base)


class FeatureSpec(BaseModel):
    title: str = ""
    base: float = 0
    mode: Mode = Mode.GRADUATED
    aggregate: Optional[Aggregate] = None
    tiers: List[TierSpec] = Field(default_factory=list)
    divide: Optional[DivideSpec] = None
    tax_included: bool = False


class PlanSpec(BaseModel):
    title: str = ""
    currency: str = "usd"
    interval: Interval = Interval.MONTHLY
    features: Dict[Name, FeatureSpec] = Field(default_factory=dict)


class Catalog(BaseModel):
    plans: Dict[Plan, PlanSpec] = Field(default_factory=dict)

    def to_features(self) -> List[Feature]:
        """Flatten into catalog entries, ordered by plan then feature."""
        out = []
        for plan in sorted(self.plans):
            spec = self.plans[plan]
            for name in sorted(spec.features):
                fs = spec.features[name]
                aggregate = fs.aggregate
                if fs.tiers and aggregate is None:
                    aggregate = Aggregate.SUM
                out.append(
                    Feature(
                        feature_plan=name.with_version(str(plan)),
                        plan_title=spec.title,
                        title=fs.title,
                        interval=spec.interval,
                        currency=spec.currency,
                        base=fs.base,
                        mode=fs.mode,
                        aggregate=aggregate,
                        tiers=[t.to_tier() for t in fs.tiers],
                        transform_denominator=fs.divide.by if fs.divide else 0,
                        transform_round_up=(
                            fs.divide is not None and fs.divide.rounding == "up"
                        ),
                        tax_included=fs.tax_included,
                    )
                )
        return out

    @classmethod
    def from_features(cls, features: List[Feature]) -> "Catalog":
        """Group catalog entries back into plans; features outside plans are skipped."""
        plans: Dict[Plan, PlanSpec] = {}
        for f in features:
            plan = f.plan
            if plan.is_zero:
                continue
            spec = plans.get(plan)
            if spec is None:
                spec = PlanSpec(
                    title=f.plan_title, currency=f.currency, interval=f.interval
                )
                plans[plan] = spec
            divide = None
            if f.transform_denominator:
                divide = DivideSpec(
                    by=f.transform_denominator,
                    rounding="up" if f.transform_round_up else "down",
                )
            spec.features[f.name] = FeatureSpec(
                title=f.title,
                base=f.base,
                mode=f.mode,
                aggregate=f.aggregate,
                tiers=[
                    TierSpec(
                        upto=0 if t.upto == INF else t.upto, price=t.price, base=t.base
                    )
                    for t in f.tiers
                ],
                divide=divide,
                tax_included=f.tax_included,
            )
        return cls(plans=plans)
