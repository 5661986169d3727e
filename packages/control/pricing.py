"""
Encoding of catalog entries as ledger prices, and back.

Licensed features become per-unit licensed prices; single-tier metered
features without a flat base become per-unit metered prices; everything
else becomes a tiered metered price whose last tier is unbounded on the
ledger. The entry's real limit is kept in metadata so it survives the
round trip.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from common.core.constants import MAX_PRICE_DECIMALS
from common.core.exceptions import ValidationError
from packages.control.errors import InvalidPrice
from packages.control.ids import META_FEATURE, META_LIMIT, META_PLAN_TITLE, META_TITLE
from packages.control.models.domain.enums import Aggregate, Interval, Mode
from packages.control.models.domain.feature import INF, Feature, Tier
from packages.control.models.domain.refs import FeaturePlan
from packages.ledger.models import LedgerPrice


def format_decimal(x: float) -> str:
    """Shortest plain (non-exponent) decimal string for x."""
    return format(Decimal(repr(float(x))).normalize(), "f")


def count_decimals(x: float) -> int:
    _, _, frac = format_decimal(x).partition(".")
    return len(frac)


def format_limit(n: int) -> str:
    return "inf" if n == INF else str(n)


def parse_limit(s: str) -> int:
    if s in ("inf", ""):
        return INF
    try:
        return int(s)
    except ValueError:
        return 0


def validate_feature(f: Feature) -> None:
    """
    Check a catalog entry locally before anything is sent to the ledger.

    Raises:
        InvalidPrice: a price has more decimal places than the ledger accepts
        ValidationError: any other malformed field
    """
    if not f.currency:
        raise ValidationError(f"{f}: currency is required")
    if f.base < 0:
        raise ValidationError(f"{f}: base must not be negative")
    if count_decimals(f.base) > MAX_PRICE_DECIMALS:
        raise InvalidPrice(
            f"{f}: base {f.base!r} must not exceed {MAX_PRICE_DECIMALS} decimal places"
        )
    if f.tiers and f.aggregate is None:
        raise ValidationError(f"{f}: metered features require an aggregate")

    last = 0
    for i, t in enumerate(f.tiers):
        if count_decimals(t.price) > MAX_PRICE_DECIMALS:
            raise InvalidPrice(
                f"{f}: tier {i} price {t.price!r} must not exceed "
                f"{MAX_PRICE_DECIMALS} decimal places"
            )
        if t.price < 0 or t.base < 0:
            raise ValidationError(f"{f}: tier {i} prices must not be negative")
        if t.upto <= last:
            raise ValidationError(
                f"{f}: tier {i} upto must be greater than the previous tier's"
            )
        last = t.upto

    if f.transform_denominator < 0:
        raise ValidationError(f"{f}: divide by must not be negative")


def price_params(f: Feature) -> Dict[str, Any]:
    """Ledger price create parameters for a validated catalog entry."""
    label = str(f.feature_plan)
    metadata = {
        META_PLAN_TITLE: f.plan_title,
        META_TITLE: f.title,
        META_FEATURE: label,
    }
    recurring: Dict[str, Any] = {
        "interval": f.interval.to_ledger(),
        "interval_count": 1,
    }
    params: Dict[str, Any] = {
        "lookup_key": f.id,
        # shown as the line item description on invoices
        "product_data": {
            "id": f.id,
            "name": f"{f.plan_title or label} - {f.title or label}",
        },
        "currency": f.currency,
        "metadata": metadata,
        "recurring": recurring,
        "tax_behavior": "inclusive" if f.tax_included else "exclusive",
    }

    if f.transform_denominator:
        params["transform_quantity"] = {
            "divide_by": f.transform_denominator,
            "round": "up" if f.transform_round_up else "down",
        }

    if not f.tiers:
        recurring["usage_type"] = "licensed"
        params["billing_scheme"] = "per_unit"
        params["unit_amount_decimal"] = format_decimal(f.base)
    elif len(f.tiers) == 1 and f.tiers[0].base == 0:
        t = f.tiers[0]
        recurring["usage_type"] = "metered"
        recurring["aggregate_usage"] = f.aggregate.to_ledger()
        params["billing_scheme"] = "per_unit"
        params["unit_amount_decimal"] = format_decimal(t.price)
        metadata[META_LIMIT] = format_limit(t.upto)
    else:
        recurring["usage_type"] = "metered"
        recurring["aggregate_usage"] = f.aggregate.to_ledger()
        params["billing_scheme"] = "tiered"
        params["tiers_mode"] = f.mode.value
        tiers = []
        for i, t in enumerate(f.tiers):
            tiers.append(
                {
                    "up_to": "inf" if i == len(f.tiers) - 1 else t.upto,
                    "unit_amount_decimal": format_decimal(t.price),
                    "flat_amount": t.base,
                }
            )
        params["tiers"] = tiers
        metadata[META_LIMIT] = format_limit(max(t.upto for t in f.tiers))

    return params


def _tier_price(t) -> float:
    if t.unit_amount_decimal is not None:
        return float(t.unit_amount_decimal)
    return float(t.unit_amount or 0)


def feature_from_price(p: LedgerPrice) -> Optional[Feature]:
    """Decode a ledger price; None if the price is not a catalog entry."""
    label = p.metadata.get(META_FEATURE)
    if not label:
        return None

    recurring = p.recurring
    aggregate = None
    if recurring is not None and recurring.aggregate_usage:
        aggregate = Aggregate.from_ledger(recurring.aggregate_usage)

    limit = parse_limit(p.metadata.get(META_LIMIT, ""))
    unit_amount = _tier_price(p)

    base = 0.0
    tiers = []
    if not p.tiers and recurring is not None and recurring.usage_type == "metered":
        tiers.append(Tier(upto=limit, price=unit_amount))
    else:
        base = unit_amount
    for i, t in enumerate(p.tiers or []):
        last = i == len(p.tiers) - 1
        tiers.append(
            Tier(
                upto=limit if last else (t.up_to if t.up_to is not None else INF),
                price=_tier_price(t),
                base=t.flat_amount or 0,
            )
        )

    return Feature(
        feature_plan=FeaturePlan.parse(label),
        provider_id=p.id,
        plan_title=p.metadata.get(META_PLAN_TITLE, ""),
        title=p.metadata.get(META_TITLE, ""),
        currency=p.currency,
        interval=(
            Interval.from_ledger(recurring.interval) if recurring else Interval.MONTHLY
        ),
        base=base,
        mode=Mode(p.tiers_mode) if p.tiers_mode else Mode.GRADUATED,
        aggregate=aggregate,
        tiers=tiers,
        transform_denominator=(
            p.transform_quantity.divide_by if p.transform_quantity else 0
        ),
        transform_round_up=(
            p.transform_quantity is not None and p.transform_quantity.round == "up"
        ),
        tax_included=p.tax_behavior == "inclusive",
    )
