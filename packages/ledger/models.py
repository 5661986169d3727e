"""
Typed views of the ledger objects the control plane reads.

Only the fields the control plane uses are declared; unknown fields are
ignored. Timestamps arrive as unix seconds and parse to aware datetimes.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _unwrap_list(value: Any) -> Any:
    """Accept either a plain list or a ledger list object ({"data": [...]})."""
    if isinstance(value, dict) and "data" in value:
        return value["data"]
    return value if value is not None else []


def _object_id(value: Union[str, "LedgerObject", None]) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return value.id


class LedgerObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class LedgerCustomer(LedgerObject):
    email: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    test_clock: Optional[str] = None
    created: Optional[datetime] = None

    @field_validator("test_clock", mode="before")
    @classmethod
    def _clock_id(cls, v):
        if isinstance(v, dict):
            return v.get("id")
        return v


class LedgerProduct(LedgerObject):
    name: Optional[str] = None
    active: bool = True
    metadata: Dict[str, str] = Field(default_factory=dict)


class LedgerTier(BaseModel):
    model_config = ConfigDict(extra="ignore")

    up_to: Optional[int] = None  # None means infinity
    unit_amount: Optional[int] = None
    unit_amount_decimal: Optional[str] = None
    flat_amount: Optional[int] = None
    flat_amount_decimal: Optional[str] = None


class LedgerRecurring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    interval: str
    interval_count: int = 1
    usage_type: str = "licensed"
    aggregate_usage: Optional[str] = None


class LedgerTransformQuantity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    divide_by: int
    round: str = "up"


class LedgerPrice(LedgerObject):
    lookup_key: Optional[str] = None
    currency: str = "usd"
    active: bool = True
    billing_scheme: str = "per_unit"
    unit_amount: Optional[int] = None
    unit_amount_decimal: Optional[str] = None
    tiers_mode: Optional[str] = None
    tiers: Optional[List[LedgerTier]] = None
    recurring: Optional[LedgerRecurring] = None
    transform_quantity: Optional[LedgerTransformQuantity] = None
    tax_behavior: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    product: Union[str, LedgerProduct, None] = None

    @property
    def product_id(self) -> Optional[str]:
        return _object_id(self.product)


class LedgerSubscriptionItem(LedgerObject):
    price: LedgerPrice
    quantity: Optional[int] = None


class LedgerCurrentPhase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start_date: datetime
    end_date: Optional[datetime] = None


class LedgerSchedulePhaseItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Union[str, LedgerPrice]
    quantity: Optional[int] = None

    @property
    def price_id(self) -> str:
        return _object_id(self.price)


class LedgerSchedulePhase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start_date: datetime
    end_date: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    items: List[LedgerSchedulePhaseItem] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)


class LedgerSchedule(LedgerObject):
    status: Optional[str] = None
    subscription: Optional[str] = None
    customer: Optional[str] = None
    end_behavior: Optional[str] = None
    current_phase: Optional[LedgerCurrentPhase] = None
    phases: List[LedgerSchedulePhase] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    released_at: Optional[datetime] = None

    @field_validator("subscription", "customer", mode="before")
    @classmethod
    def _ref_id(cls, v):
        if isinstance(v, dict):
            return v.get("id")
        return v


class LedgerSubscription(LedgerObject):
    customer: Optional[str] = None
    status: str
    schedule: Union[str, LedgerSchedule, None] = None
    items: List[LedgerSubscriptionItem] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        return _unwrap_list(v)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, v):
        if isinstance(v, dict):
            return v.get("id")
        return v

    @property
    def schedule_id(self) -> Optional[str]:
        return _object_id(self.schedule)


class LedgerPeriod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: datetime
    end: datetime


class LedgerInvoiceLine(LedgerObject):
    quantity: Optional[int] = None
    amount: Optional[int] = None
    price: Optional[LedgerPrice] = None
    period: Optional[LedgerPeriod] = None
    subscription_item: Optional[str] = None

    @field_validator("subscription_item", mode="before")
    @classmethod
    def _item_id(cls, v):
        if isinstance(v, dict):
            return v.get("id")
        return v


class LedgerAccount(LedgerObject):
    email: Optional[str] = None
    created: Optional[datetime] = None


class LedgerTestClock(LedgerObject):
    name: Optional[str] = None
    status: str
    frozen_time: datetime


class LedgerUsageRecord(LedgerObject):
    quantity: int
    subscription_item: str
    timestamp: datetime
