"""Domain models for the control plane."""

from packages.control.models.domain.enums import (
    Aggregate,
    EndBehavior,
    Interval,
    Mode,
    PushStatus,
    SubscriptionStatus,
)
from packages.control.models.domain.refs import (
    FeaturePlan,
    Name,
    Plan,
    RefParseError,
    parse_feature_plans,
)
from packages.control.models.domain.feature import INF, Feature, Tier, feature_plans
from packages.control.models.domain.phase import (
    IMMEDIATE,
    At,
    Effective,
    Immediate,
    Org,
    OrgInfo,
    Phase,
)
from packages.control.models.domain.usage import PushResult, Report, Usage
from packages.control.models.domain.clock import Clock
from packages.control.models.domain.account import Account
from packages.control.models.domain.catalog import Catalog

__all__ = [
    # Enums
    "Aggregate",
    "EndBehavior",
    "Interval",
    "Mode",
    "PushStatus",
    "SubscriptionStatus",
    # Refs
    "FeaturePlan",
    "Name",
    "Plan",
    "RefParseError",
    "parse_feature_plans",
    # Catalog
    "INF",
    "Catalog",
    "Feature",
    "Tier",
    "feature_plans",
    # Phases
    "IMMEDIATE",
    "At",
    "Effective",
    "Immediate",
    "Org",
    "OrgInfo",
    "Phase",
    # Usage
    "PushResult",
    "Report",
    "Usage",
    # Clocks
    "Clock",
    # Accounts
    "Account",
]
