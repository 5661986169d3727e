"""
Stripe implementation of the ledger interface.

Each instance carries its own credentials and passes them as per-request
options, so several ledgers (accounts, keys) can coexist in one process.
The SDK is synchronous; calls run in worker threads.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import stripe

from common.core.telemetry import trace_span, get_logger
from packages.ledger.errors import InvalidAPIKey, LedgerConnectionError, LedgerError
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

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_API_VERSION = "2022-11-15"


def translate_error(e: stripe.error.StripeError) -> LedgerError:
    """Convert an SDK error into a LedgerError."""
    if isinstance(e, stripe.error.APIConnectionError):
        cls = LedgerConnectionError
    elif isinstance(e, stripe.error.AuthenticationError):
        cls = InvalidAPIKey
    else:
        cls = LedgerError
    body = e.json_body if isinstance(e.json_body, dict) else None
    return cls.from_body(
        body,
        http_status=e.http_status,
        request_id=e.request_id,
        fallback_message=e.user_message or str(e),
    )


class StripeLedger(LedgerInterface):
    """Stripe-backed ledger."""

    def __init__(
        self,
        api_key: str,
        api_version: str = DEFAULT_API_VERSION,
        account_id: Optional[str] = None,
        key_prefix: str = "",
    ):
        if not api_key:
            raise InvalidAPIKey("missing Stripe API key")
        self.api_key = api_key
        self.api_version = api_version
        self._account_id = account_id or ""
        self.key_prefix = key_prefix

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def live(self) -> bool:
        return "_live_" in self.api_key

    def _options(self, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "api_key": self.api_key,
            "stripe_version": self.api_version,
        }
        if self._account_id:
            options["stripe_account"] = self._account_id
        if idempotency_key:
            if self.key_prefix:
                idempotency_key = f"{self.key_prefix}#{idempotency_key}"
            options["idempotency_key"] = idempotency_key
        return options

    async def _call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.error.StripeError as e:
            err = translate_error(e)
            logger.debug(
                f"Stripe request failed: {err}",
                extra={"request_id": err.request_id, "code": err.code},
            )
            raise err from e

    @staticmethod
    def _slurp(listing) -> List[Any]:
        return list(listing.auto_paging_iter())

    @trace_span
    async def retrieve_account(self) -> LedgerAccount:
        account = await self._call(stripe.Account.retrieve, **self._options())
        return LedgerAccount.model_validate(account)

    # Customers

    @trace_span
    async def create_customer(
        self, params: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> LedgerCustomer:
        customer = await self._call(
            stripe.Customer.create, **params, **self._options(idempotency_key)
        )
        return LedgerCustomer.model_validate(customer)

    @trace_span
    async def list_customers(
        self, test_clock: Optional[str] = None
    ) -> List[LedgerCustomer]:
        params: Dict[str, Any] = {"limit": 100}
        if test_clock:
            params["test_clock"] = test_clock
        customers = await self._call(
            lambda: self._slurp(stripe.Customer.list(**params, **self._options()))
        )
        return [LedgerCustomer.model_validate(c) for c in customers]

    @trace_span
    async def retrieve_customer(self, customer_id: str) -> LedgerCustomer:
        customer = await self._call(
            stripe.Customer.retrieve, customer_id, **self._options()
        )
        return LedgerCustomer.model_validate(customer)

    @trace_span
    async def update_customer(
        self, customer_id: str, params: Dict[str, Any]
    ) -> LedgerCustomer:
        customer = await self._call(
            stripe.Customer.modify, customer_id, **params, **self._options()
        )
        return LedgerCustomer.model_validate(customer)

    # Catalog

    @trace_span
    async def create_product(self, params: Dict[str, Any]) -> LedgerProduct:
        product = await self._call(stripe.Product.create, **params, **self._options())
        return LedgerProduct.model_validate(product)

    @trace_span
    async def create_price(self, params: Dict[str, Any]) -> LedgerPrice:
        price = await self._call(stripe.Price.create, **params, **self._options())
        return LedgerPrice.model_validate(price)

    @trace_span
    async def list_prices(
        self,
        lookup_keys: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
    ) -> List[LedgerPrice]:
        params: Dict[str, Any] = {"limit": 100}
        if lookup_keys:
            params["lookup_keys"] = list(lookup_keys)
        if expand:
            params["expand"] = list(expand)
        prices = await self._call(
            lambda: self._slurp(stripe.Price.list(**params, **self._options()))
        )
        return [LedgerPrice.model_validate(p) for p in prices]

    # Schedules and subscriptions

    @trace_span
    async def create_schedule(self, params: Dict[str, Any]) -> LedgerSchedule:
        schedule = await self._call(
            stripe.SubscriptionSchedule.create, **params, **self._options()
        )
        return LedgerSchedule.model_validate(schedule)

    @trace_span
    async def create_schedule_from_subscription(
        self, subscription_id: str
    ) -> LedgerSchedule:
        schedule = await self._call(
            stripe.SubscriptionSchedule.create,
            from_subscription=subscription_id,
            **self._options(),
        )
        return LedgerSchedule.model_validate(schedule)

    @trace_span
    async def update_schedule(
        self, schedule_id: str, params: Dict[str, Any]
    ) -> LedgerSchedule:
        schedule = await self._call(
            stripe.SubscriptionSchedule.modify,
            schedule_id,
            **params,
            **self._options(),
        )
        return LedgerSchedule.model_validate(schedule)

    @trace_span
    async def retrieve_schedule(
        self, schedule_id: str, expand: Optional[List[str]] = None
    ) -> LedgerSchedule:
        params: Dict[str, Any] = {}
        if expand:
            params["expand"] = list(expand)
        schedule = await self._call(
            stripe.SubscriptionSchedule.retrieve,
            schedule_id,
            **params,
            **self._options(),
        )
        return LedgerSchedule.model_validate(schedule)

    @trace_span
    async def list_subscriptions(
        self, customer_id: str, expand: Optional[List[str]] = None
    ) -> List[LedgerSubscription]:
        params: Dict[str, Any] = {"customer": customer_id, "status": "all"}
        if expand:
            params["expand"] = list(expand)
        subscriptions = await self._call(
            lambda: self._slurp(stripe.Subscription.list(**params, **self._options()))
        )
        return [LedgerSubscription.model_validate(s) for s in subscriptions]

    @trace_span
    async def cancel_subscription(
        self, subscription_id: str, prorate: bool = True, invoice_now: bool = True
    ) -> LedgerSubscription:
        subscription = await self._call(
            stripe.Subscription.cancel,
            subscription_id,
            prorate=prorate,
            invoice_now=invoice_now,
            **self._options(),
        )
        logger.info(
            "Cancelled Stripe subscription",
            extra={"subscription_id": subscription_id},
        )
        return LedgerSubscription.model_validate(subscription)

    # Usage

    @trace_span
    async def create_usage_record(
        self,
        subscription_item_id: str,
        quantity: int,
        timestamp: Any,
        action: str,
        idempotency_key: Optional[str] = None,
    ) -> LedgerUsageRecord:
        record = await self._call(
            stripe.SubscriptionItem.create_usage_record,
            subscription_item_id,
            quantity=quantity,
            timestamp=timestamp,
            action=action,
            **self._options(idempotency_key),
        )
        return LedgerUsageRecord.model_validate(record)

    @trace_span
    async def list_upcoming_invoice_lines(
        self, customer_id: str
    ) -> List[LedgerInvoiceLine]:
        lines = await self._call(
            lambda: self._slurp(
                stripe.Invoice.upcoming_lines(
                    customer=customer_id,
                    limit=100,
                    expand=["data.price.tiers"],
                    **self._options(),
                )
            )
        )
        return [LedgerInvoiceLine.model_validate(line) for line in lines]

    # Test clocks

    @trace_span
    async def create_test_clock(
        self, name: str, frozen_time: datetime
    ) -> LedgerTestClock:
        clock = await self._call(
            stripe.test_helpers.TestClock.create,
            name=name,
            frozen_time=int(frozen_time.timestamp()),
            **self._options(),
        )
        return LedgerTestClock.model_validate(clock)

    @trace_span
    async def advance_test_clock(
        self, clock_id: str, frozen_time: datetime
    ) -> LedgerTestClock:
        clock = await self._call(
            stripe.test_helpers.TestClock.advance,
            clock_id,
            frozen_time=int(frozen_time.timestamp()),
            **self._options(),
        )
        return LedgerTestClock.model_validate(clock)

    @trace_span
    async def retrieve_test_clock(self, clock_id: str) -> LedgerTestClock:
        clock = await self._call(
            stripe.test_helpers.TestClock.retrieve, clock_id, **self._options()
        )
        return LedgerTestClock.model_validate(clock)
