"""
Domain models for an org's entitlement timeline.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field

from packages.control.models.domain.refs import FeaturePlan, Plan


@dataclass(frozen=True)
class Immediate:
    """A phase takes effect as soon as the ledger applies it."""

    def __repr__(self) -> str:
        return "Immediate"


@dataclass(frozen=True)
class At:
    """A phase takes effect at a fixed instant."""

    time: datetime

    def __post_init__(self):
        if self.time.tzinfo is None:
            object.__setattr__(self, "time", self.time.replace(tzinfo=timezone.utc))


IMMEDIATE = Immediate()

Effective = Union[Immediate, At]


def ledger_time(effective: Effective) -> Union[str, int]:
    """Encode an effective time the way the ledger accepts it."""
    if isinstance(effective, At):
        return int(effective.time.timestamp())
    return "now"


class Phase(BaseModel):
    """
    A time-bounded set of active entitlements for an org.

    A phase without features is a cancellation and must be the last phase
    of a timeline. `org`, `current` and `plans` are populated on reads.
    """

    org: str = ""
    effective: Effective = IMMEDIATE
    features: List[FeaturePlan] = Field(default_factory=list)
    trial: bool = False
    current: bool = False

    # Plans with every one of their published features in this phase.
    plans: List[Plan] = Field(default_factory=list)

    @property
    def is_cancel(self) -> bool:
        return not self.features

    @property
    def is_immediate(self) -> bool:
        return isinstance(self.effective, Immediate)

    @property
    def fragments(self) -> List[FeaturePlan]:
        """Features present in the phase without all of their plan siblings."""
        return [f for f in self.features if f.plan not in self.plans]


class OrgInfo(BaseModel):
    """Customer details kept on the ledger for an org."""

    email: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class Org(BaseModel):
    """An org known to the ledger."""

    id: str
    provider_id: str
    email: Optional[str] = None
