"""
In-memory ledger for unit tests.

Mirrors the ledger behaviours the control plane depends on: unique product
ids and price lookup keys, customer idempotency keys, schedules created from
subscriptions, schedules that can be released underneath an update, the
per-phase item cap, set/increment usage records with idempotency keys,
upcoming invoice lines, and test clocks that advance asynchronously.
"""

import copy
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from packages.ledger.errors import LedgerError
from packages.ledger.interface import LedgerInterface
from packages.ledger.models import (
    LedgerAccount,
    LedgerCustomer,
    LedgerInvoiceLine,
    LedgerPrice,
    LedgerProduct,
    LedgerSchedule,
    LedgerSubscription,
    LedgerTestClock,
    LedgerUsageRecord,
)

DEFAULT_NOW = datetime(2023, 1, 1, tzinfo=timezone.utc)

RELEASED_MESSAGE = (
    "You cannot update a subscription schedule that is currently in the "
    "`released` status. It must be in either the `not_started` or `active` status."
)


def invalid_request(message: str, code: Optional[str] = None, param: Optional[str] = None):
    return LedgerError(
        message, type="invalid_request_error", code=code, param=param, http_status=400
    )


def missing(kind: str, id: str, param: str = "id") -> LedgerError:
    return invalid_request(f"No such {kind}: '{id}'", code="resource_missing", param=param)


class FakeLedger(LedgerInterface):
    """Stripe-like ledger held in dictionaries."""

    MAX_ITEMS = 20

    def __init__(self, live: bool = False, account_id: str = "", now: datetime = DEFAULT_NOW):
        self._live = live
        self._account_id = account_id
        self.now = now
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, List[BaseException]] = {}
        self.release_on_update = 0
        self.clock_polls_until_ready = 2

        self.customers: Dict[str, Dict[str, Any]] = {}
        self.customer_keys: Dict[str, str] = {}
        self.products: Dict[str, Dict[str, Any]] = {}
        self.prices: Dict[str, Dict[str, Any]] = {}
        self.lookup_keys: Dict[str, str] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.schedules: Dict[str, Dict[str, Any]] = {}
        self.usage: Dict[str, int] = {}
        self.usage_keys: Dict[str, Dict[str, Any]] = {}
        self.clocks: Dict[str, Dict[str, Any]] = {}
        self._clock_polls: Dict[str, int] = {}
        self._ids = itertools.count(1)

    # Test helpers

    def fail_next(self, method: str, *errors: BaseException) -> None:
        """Make the next calls to method raise errors, in order."""
        self.failures.setdefault(method, []).extend(errors)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def _ts(self) -> int:
        return int(self.now.timestamp())

    def _id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, copy.deepcopy(kwargs)))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def live(self) -> bool:
        return self._live

    async def retrieve_account(self) -> LedgerAccount:
        self._record("retrieve_account")
        return LedgerAccount(
            id=self._account_id or "acct_platform",
            email="billing@platform.test",
            created=DEFAULT_NOW,
        )

    # Customers

    async def create_customer(
        self, params: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> LedgerCustomer:
        self._record("create_customer", params=params, idempotency_key=idempotency_key)
        if idempotency_key and idempotency_key in self.customer_keys:
            return LedgerCustomer.model_validate(
                self.customers[self.customer_keys[idempotency_key]]
            )
        customer = {
            "id": self._id("cus"),
            "email": params.get("email"),
            "name": params.get("name"),
            "description": params.get("description"),
            "phone": params.get("phone"),
            "metadata": dict(params.get("metadata", {})),
            "test_clock": params.get("test_clock"),
            "created": self._ts(),
        }
        self.customers[customer["id"]] = customer
        if idempotency_key:
            self.customer_keys[idempotency_key] = customer["id"]
        return LedgerCustomer.model_validate(customer)

    async def list_customers(self, test_clock: Optional[str] = None) -> List[LedgerCustomer]:
        self._record("list_customers", test_clock=test_clock)
        return [
            LedgerCustomer.model_validate(c)
            for c in reversed(list(self.customers.values()))
            if c.get("test_clock") == test_clock
        ]

    async def retrieve_customer(self, customer_id: str) -> LedgerCustomer:
        self._record("retrieve_customer", customer_id=customer_id)
        if customer_id not in self.customers:
            raise missing("customer", customer_id)
        return LedgerCustomer.model_validate(self.customers[customer_id])

    async def update_customer(
        self, customer_id: str, params: Dict[str, Any]
    ) -> LedgerCustomer:
        self._record("update_customer", customer_id=customer_id, params=params)
        customer = self.customers.get(customer_id)
        if customer is None:
            raise missing("customer", customer_id)
        for key, value in params.items():
            if key == "metadata":
                customer["metadata"].update(value)
            else:
                customer[key] = value
        return LedgerCustomer.model_validate(customer)

    # Catalog

    async def create_product(self, params: Dict[str, Any]) -> LedgerProduct:
        self._record("create_product", params=params)
        product_id = params.get("id") or self._id("prod")
        if product_id in self.products:
            raise invalid_request(
                f"Product already exists.", code="resource_already_exists", param="id"
            )
        product = {
            "id": product_id,
            "name": params.get("name"),
            "active": params.get("active", True),
            "metadata": dict(params.get("metadata", {})),
        }
        self.products[product_id] = product
        return LedgerProduct.model_validate(product)

    async def create_price(self, params: Dict[str, Any]) -> LedgerPrice:
        self._record("create_price", params=params)
        lookup_key = params.get("lookup_key")
        if lookup_key and lookup_key in self.lookup_keys:
            raise invalid_request(
                "A price with this lookup key already exists.",
                code="resource_already_exists",
                param="lookup_key",
            )
        product_data = params.get("product_data") or {}
        product_id = product_data.get("id") or self._id("prod")
        if product_id in self.products:
            raise invalid_request(
                "Product already exists.",
                code="resource_already_exists",
                param="product_data[id]",
            )
        self.products[product_id] = {
            "id": product_id,
            "name": product_data.get("name"),
            "active": True,
            "metadata": {},
        }

        tiers = None
        if params.get("tiers"):
            if params["tiers"][-1]["up_to"] != "inf":
                raise invalid_request("The last tier must be unbounded", param="tiers")
            tiers = [
                {
                    "up_to": None if t["up_to"] == "inf" else t["up_to"],
                    "unit_amount_decimal": t.get("unit_amount_decimal"),
                    "flat_amount": t.get("flat_amount"),
                }
                for t in params["tiers"]
            ]

        recurring = dict(params.get("recurring") or {})
        recurring.setdefault("usage_type", "licensed")
        price = {
            "id": self._id("price"),
            "lookup_key": lookup_key,
            "currency": params.get("currency", "usd"),
            "billing_scheme": params.get("billing_scheme", "per_unit"),
            "unit_amount_decimal": params.get("unit_amount_decimal"),
            "tiers_mode": params.get("tiers_mode"),
            "tiers": tiers,
            "recurring": recurring,
            "transform_quantity": params.get("transform_quantity"),
            "tax_behavior": params.get("tax_behavior"),
            "metadata": dict(params.get("metadata", {})),
            "product": product_id,
        }
        self.prices[price["id"]] = price
        if lookup_key:
            self.lookup_keys[lookup_key] = price["id"]
        return LedgerPrice.model_validate(price)

    async def list_prices(
        self,
        lookup_keys: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
    ) -> List[LedgerPrice]:
        self._record("list_prices", lookup_keys=lookup_keys, expand=expand)
        if lookup_keys is not None and len(lookup_keys) > 10:
            raise invalid_request(
                "You may only specify up to 10 lookup keys.", param="lookup_keys"
            )
        prices = list(self.prices.values())
        if lookup_keys:
            prices = [p for p in prices if p["lookup_key"] in lookup_keys]
        return [LedgerPrice.model_validate(p) for p in reversed(prices)]

    # Schedules and subscriptions

    def _phase_items(self, phase: Dict[str, Any], index: int) -> List[Dict[str, Any]]:
        items = phase.get("items") or []
        if len(items) > self.MAX_ITEMS:
            raise invalid_request(
                f"A subscription schedule phase can have a maximum number of items "
                f"of {self.MAX_ITEMS}.",
                param=f"phases[{index}][items]",
            )
        for j, item in enumerate(items):
            if item["price"] not in self.prices:
                raise missing(
                    "price", item["price"], param=f"phases[{index}][items][{j}][price]"
                )
        return [{"price": item["price"]} for item in items]

    def _time(self, value: Any) -> int:
        return self._ts() if value == "now" else int(value)

    def _build_phases(self, params: Dict[str, Any], first_start: Any) -> List[Dict[str, Any]]:
        phases = []
        start = self._time(first_start)
        for i, p in enumerate(params.get("phases", [])):
            if i > 0 and p.get("start_date") is not None:
                start = self._time(p["start_date"])
            end = self._time(p["end_date"]) if p.get("end_date") is not None else None
            phases.append(
                {
                    "start_date": start,
                    "end_date": end,
                    "trial_end": end if p.get("trial") else None,
                    "items": self._phase_items(p, i),
                    "metadata": {},
                }
            )
            start = end
        return phases

    def _current_phase(self, phases: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        now = self._ts()
        current = None
        for p in phases:
            if p["start_date"] <= now and (p["end_date"] is None or now < p["end_date"]):
                current = p
        return current

    def _sync_subscription(self, schedule: Dict[str, Any]) -> None:
        """Apply the schedule's current phase to its subscription."""
        current = self._current_phase(schedule["phases"])
        schedule["current_phase"] = (
            {"start_date": current["start_date"], "end_date": current["end_date"]}
            if current
            else None
        )
        if current is None:
            return

        sub_id = schedule.get("subscription")
        if sub_id is None:
            sub_id = self._id("sub")
            self.subscriptions[sub_id] = {
                "id": sub_id,
                "customer": schedule["customer"],
                "status": "active",
                "schedule": schedule["id"],
                "items": [],
                "start_date": current["start_date"],
                "trial_end": None,
                "cancel_at": None,
                "canceled_at": None,
                "metadata": {},
                "_created": next(self._ids),
            }
            schedule["subscription"] = sub_id
        sub = self.subscriptions[sub_id]

        existing = {item["price"]["id"]: item["id"] for item in sub["items"]}
        sub["items"] = [
            {
                "id": existing.get(item["price"]) or self._id("si"),
                "price": copy.deepcopy(self.prices[item["price"]]),
                "quantity": 1,
            }
            for item in current["items"]
        ]
        sub["trial_end"] = current["trial_end"]
        sub["status"] = "trialing" if current["trial_end"] else "active"
        last = schedule["phases"][-1]
        sub["cancel_at"] = (
            last["end_date"] if schedule["end_behavior"] == "cancel" else None
        )

    async def create_schedule(self, params: Dict[str, Any]) -> LedgerSchedule:
        self._record("create_schedule", params=params)
        customer_id = params.get("customer")
        if customer_id not in self.customers:
            raise missing("customer", customer_id, param="customer")
        schedule = {
            "id": self._id("sub_sched"),
            "status": "active",
            "subscription": None,
            "customer": customer_id,
            "end_behavior": params.get("end_behavior", "release"),
            "metadata": dict(params.get("metadata", {})),
            "phases": self._build_phases(params, params.get("start_date", "now")),
            "current_phase": None,
        }
        self.schedules[schedule["id"]] = schedule
        self._sync_subscription(schedule)
        if schedule["subscription"] is None:
            schedule["status"] = "not_started"
        return LedgerSchedule.model_validate(schedule)

    async def create_schedule_from_subscription(
        self, subscription_id: str
    ) -> LedgerSchedule:
        self._record("create_schedule_from_subscription", subscription_id=subscription_id)
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            raise missing("subscription", subscription_id, param="from_subscription")
        if sub["schedule"] is not None:
            raise invalid_request(
                "You cannot migrate a subscription that is already attached to a schedule.",
                param="from_subscription",
            )
        if sub["status"] == "canceled":
            raise invalid_request(
                "You cannot migrate a canceled subscription.", param="from_subscription"
            )
        phase = {
            "start_date": self._ts(),
            "end_date": None,
            "trial_end": sub["trial_end"],
            "items": [{"price": item["price"]["id"]} for item in sub["items"]],
            "metadata": {},
        }
        schedule = {
            "id": self._id("sub_sched"),
            "status": "active",
            "subscription": subscription_id,
            "customer": sub["customer"],
            "end_behavior": "release",
            "metadata": {},
            "phases": [phase],
            "current_phase": {"start_date": phase["start_date"], "end_date": None},
        }
        self.schedules[schedule["id"]] = schedule
        sub["schedule"] = schedule["id"]
        return LedgerSchedule.model_validate(schedule)

    def release(self, schedule_id: str) -> None:
        """Release a schedule the way the ledger does when it runs out."""
        schedule = self.schedules[schedule_id]
        schedule["status"] = "released"
        sub_id = schedule.get("subscription")
        if sub_id:
            self.subscriptions[sub_id]["schedule"] = None

    async def update_schedule(
        self, schedule_id: str, params: Dict[str, Any]
    ) -> LedgerSchedule:
        self._record("update_schedule", schedule_id=schedule_id, params=params)
        schedule = self.schedules.get(schedule_id)
        if schedule is None:
            raise missing("subscription_schedule", schedule_id)
        if self.release_on_update > 0:
            self.release_on_update -= 1
            self.release(schedule_id)
        if schedule["status"] == "released":
            raise invalid_request(RELEASED_MESSAGE)

        phases_params = params.get("phases", [])
        if not phases_params:
            raise invalid_request("Missing required param: phases.", param="phases")
        current = schedule["current_phase"]
        first_start = phases_params[0].get("start_date", "now")
        if current is not None and self._time(first_start) != current["start_date"]:
            raise invalid_request(
                "You can not modify the start date of the current phase.",
                param="phases[0][start_date]",
            )

        schedule["phases"] = self._build_phases(params, first_start)
        schedule["metadata"].update(params.get("metadata", {}))
        schedule["end_behavior"] = params.get("end_behavior", schedule["end_behavior"])
        self._sync_subscription(schedule)
        return LedgerSchedule.model_validate(schedule)

    async def retrieve_schedule(
        self, schedule_id: str, expand: Optional[List[str]] = None
    ) -> LedgerSchedule:
        self._record("retrieve_schedule", schedule_id=schedule_id, expand=expand)
        if schedule_id not in self.schedules:
            raise missing("subscription_schedule", schedule_id)
        return LedgerSchedule.model_validate(self.schedules[schedule_id])

    def _render_subscription(self, sub: Dict[str, Any], expand_schedule: bool) -> Dict[str, Any]:
        out = {k: v for k, v in sub.items() if not k.startswith("_")}
        out["items"] = {"object": "list", "data": copy.deepcopy(sub["items"])}
        if expand_schedule and sub["schedule"]:
            out["schedule"] = copy.deepcopy(self.schedules[sub["schedule"]])
        return out

    async def list_subscriptions(
        self, customer_id: str, expand: Optional[List[str]] = None
    ) -> List[LedgerSubscription]:
        self._record("list_subscriptions", customer_id=customer_id, expand=expand)
        expand_schedule = "data.schedule" in (expand or [])
        subs = [s for s in self.subscriptions.values() if s["customer"] == customer_id]
        subs.sort(key=lambda s: s["_created"], reverse=True)
        return [
            LedgerSubscription.model_validate(self._render_subscription(s, expand_schedule))
            for s in subs
        ]

    async def cancel_subscription(
        self, subscription_id: str, prorate: bool = True, invoice_now: bool = True
    ) -> LedgerSubscription:
        self._record(
            "cancel_subscription",
            subscription_id=subscription_id,
            prorate=prorate,
            invoice_now=invoice_now,
        )
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            raise missing("subscription", subscription_id)
        sub["status"] = "canceled"
        sub["canceled_at"] = self._ts()
        if sub["schedule"]:
            self.schedules[sub["schedule"]]["status"] = "canceled"
            sub["schedule"] = None
        return LedgerSubscription.model_validate(self._render_subscription(sub, False))

    # Usage

    def _find_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        for sub in self.subscriptions.values():
            for item in sub["items"]:
                if item["id"] == item_id:
                    return item
        return None

    async def create_usage_record(
        self,
        subscription_item_id: str,
        quantity: int,
        timestamp: Any,
        action: str,
        idempotency_key: Optional[str] = None,
    ) -> LedgerUsageRecord:
        self._record(
            "create_usage_record",
            subscription_item_id=subscription_item_id,
            quantity=quantity,
            timestamp=timestamp,
            action=action,
            idempotency_key=idempotency_key,
        )
        if idempotency_key and idempotency_key in self.usage_keys:
            return LedgerUsageRecord.model_validate(self.usage_keys[idempotency_key])
        if self._find_item(subscription_item_id) is None:
            raise missing("subscription_item", subscription_item_id)
        if action == "set":
            self.usage[subscription_item_id] = quantity
        else:
            self.usage[subscription_item_id] = self.usage.get(subscription_item_id, 0) + quantity
        record = {
            "id": self._id("mbur"),
            "quantity": quantity,
            "subscription_item": subscription_item_id,
            "timestamp": self._time(timestamp),
        }
        if idempotency_key:
            self.usage_keys[idempotency_key] = record
        return LedgerUsageRecord.model_validate(record)

    async def list_upcoming_invoice_lines(
        self, customer_id: str
    ) -> List[LedgerInvoiceLine]:
        self._record("list_upcoming_invoice_lines", customer_id=customer_id)
        subs = [
            s
            for s in self.subscriptions.values()
            if s["customer"] == customer_id and s["status"] != "canceled"
        ]
        if not subs:
            raise invalid_request(
                "No upcoming invoices for customer: " + customer_id,
                code="invoice_upcoming_none",
            )
        lines = []
        for sub in subs:
            for item in sub["items"]:
                metered = item["price"]["recurring"].get("usage_type") == "metered"
                lines.append(
                    {
                        "id": self._id("il"),
                        "quantity": self.usage.get(item["id"], 0) if metered else 1,
                        "price": copy.deepcopy(item["price"]),
                        "period": {"start": sub["start_date"], "end": self._ts() + 86400 * 30},
                        "subscription_item": item["id"],
                    }
                )
        return [LedgerInvoiceLine.model_validate(line) for line in lines]

    # Test clocks

    async def create_test_clock(self, name: str, frozen_time: datetime) -> LedgerTestClock:
        self._record("create_test_clock", name=name, frozen_time=frozen_time)
        clock = {
            "id": self._id("clock"),
            "name": name,
            "status": "ready",
            "frozen_time": int(frozen_time.timestamp()),
        }
        self.clocks[clock["id"]] = clock
        return LedgerTestClock.model_validate(clock)

    async def advance_test_clock(
        self, clock_id: str, frozen_time: datetime
    ) -> LedgerTestClock:
        self._record("advance_test_clock", clock_id=clock_id, frozen_time=frozen_time)
        clock = self.clocks.get(clock_id)
        if clock is None:
            raise missing("test_clock", clock_id)
        clock["frozen_time"] = int(frozen_time.timestamp())
        clock["status"] = "advancing"
        self._clock_polls[clock_id] = self.clock_polls_until_ready
        return LedgerTestClock.model_validate(clock)

    async def retrieve_test_clock(self, clock_id: str) -> LedgerTestClock:
        self._record("retrieve_test_clock", clock_id=clock_id)
        clock = self.clocks.get(clock_id)
        if clock is None:
            raise missing("test_clock", clock_id)
        if clock["status"] == "advancing":
            remaining = self._clock_polls.get(clock_id, 0) - 1
            self._clock_polls[clock_id] = remaining
            if remaining <= 0:
                clock["status"] = "ready"
        return LedgerTestClock.model_validate(clock)
