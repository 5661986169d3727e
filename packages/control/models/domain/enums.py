"""
Control plane enums and their ledger encodings.
"""

from enum import Enum


class Interval(str, Enum):
    """Billing interval of a feature."""

    DAILY = "@daily"
    WEEKLY = "@weekly"
    MONTHLY = "@monthly"
    YEARLY = "@yearly"

    def to_ledger(self) -> str:
        return _INTERVAL_TO_LEDGER[self]

    @classmethod
    def from_ledger(cls, interval: str) -> "Interval":
        for k, v in _INTERVAL_TO_LEDGER.items():
            if v == interval:
                return k
        raise ValueError(f"unknown ledger interval: {interval!r}")


_INTERVAL_TO_LEDGER = {
    Interval.DAILY: "day",
    Interval.WEEKLY: "week",
    Interval.MONTHLY: "month",
    Interval.YEARLY: "year",
}


class Mode(str, Enum):
    """How tiers apply to usage."""

    GRADUATED = "graduated"  # each unit priced by the tier it falls in
    VOLUME = "volume"  # all units priced by the tier the total falls in


class Aggregate(str, Enum):
    """How usage records combine over a billing period."""

    SUM = "sum"
    MAX = "max"
    LAST = "last"
    PERPETUAL = "perpetual"

    def to_ledger(self) -> str:
        return _AGGREGATE_TO_LEDGER[self]

    @classmethod
    def from_ledger(cls, aggregate: str) -> "Aggregate":
        for k, v in _AGGREGATE_TO_LEDGER.items():
            if v == aggregate:
                return k
        raise ValueError(f"unknown ledger aggregate: {aggregate!r}")


_AGGREGATE_TO_LEDGER = {
    Aggregate.SUM: "sum",
    Aggregate.MAX: "max",
    Aggregate.LAST: "last_during_period",
    Aggregate.PERPETUAL: "last_ever",
}


class PushStatus(str, Enum):
    """Outcome of publishing one catalog entry."""

    OK = "ok"
    FEATURE_EXISTS = "feature_exists"
    PLAN_EXISTS = "plan_exists"
    INVALID = "invalid"
    FAILED = "failed"

    def is_error(self) -> bool:
        return self in (PushStatus.INVALID, PushStatus.FAILED)


class SubscriptionStatus(str, Enum):
    """Ledger subscription statuses."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"

    def is_ended(self) -> bool:
        return self in (
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.INCOMPLETE_EXPIRED,
        )


class EndBehavior(str, Enum):
    """What a schedule does after its last phase."""

    RELEASE = "release"
    CANCEL = "cancel"
