"""
Domain models for usage reporting and limits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from packages.control.models.domain.feature import INF, Feature
from packages.control.models.domain.enums import PushStatus
from packages.control.models.domain.phase import IMMEDIATE, Effective
from packages.control.models.domain.refs import FeaturePlan


class Report(BaseModel):
    """A usage report for one feature."""

    n: int
    at: Effective = IMMEDIATE
    clobber: bool = False  # replace the recorded amount instead of adding


class Usage(BaseModel):
    """Usage of a feature in the current billing period."""

    feature: FeaturePlan
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    used: int = 0
    limit: int = INF


@dataclass
class PushResult:
    """Outcome of publishing one catalog entry."""

    feature: Feature
    status: PushStatus
    error: Optional[Exception] = None

    @property
    def reason(self) -> str:
        return str(self.error) if self.error else ""
