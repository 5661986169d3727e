from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

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


class LedgerInterface(ABC):
    """
    Interface for the remote billing ledger.

    Parameters are passed in the ledger's own request shape (nested dicts),
    results come back as typed ledger models. Implementations raise
    packages.ledger.errors.LedgerError for every failed request.
    """

    @property
    @abstractmethod
    def account_id(self) -> str:
        """The account all requests are scoped to ("" for the key's own)."""
        pass

    @property
    @abstractmethod
    def live(self) -> bool:
        """True when talking to the live (not test mode) ledger."""
        pass

    @abstractmethod
    async def retrieve_account(self) -> LedgerAccount:
        """The account requests are scoped to (the connected one, if set)."""
        pass

    # Customers

    @abstractmethod
    async def create_customer(
        self, params: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> LedgerCustomer:
        pass

    @abstractmethod
    async def list_customers(
        self, test_clock: Optional[str] = None
    ) -> List[LedgerCustomer]:
        """List every customer, following pagination."""
        pass

    @abstractmethod
    async def retrieve_customer(self, customer_id: str) -> LedgerCustomer:
        pass

    @abstractmethod
    async def update_customer(
        self, customer_id: str, params: Dict[str, Any]
    ) -> LedgerCustomer:
        pass

    # Catalog

    @abstractmethod
    async def create_product(self, params: Dict[str, Any]) -> LedgerProduct:
        """Create a product. Fails with resource_already_exists on id reuse."""
        pass

    @abstractmethod
    async def create_price(self, params: Dict[str, Any]) -> LedgerPrice:
        """Create a price. Fails with resource_already_exists on lookup_key reuse."""
        pass

    @abstractmethod
    async def list_prices(
        self,
        lookup_keys: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
    ) -> List[LedgerPrice]:
        """
        List prices, following pagination.

        Args:
            lookup_keys: Restrict to these lookup keys (at most 10)
            expand: Fields to expand, e.g. ["data.tiers"]
        """
        pass

    # Schedules and subscriptions

    @abstractmethod
    async def create_schedule(self, params: Dict[str, Any]) -> LedgerSchedule:
        pass

    @abstractmethod
    async def create_schedule_from_subscription(
        self, subscription_id: str
    ) -> LedgerSchedule:
        """Create a schedule that takes over an existing subscription."""
        pass

    @abstractmethod
    async def update_schedule(
        self, schedule_id: str, params: Dict[str, Any]
    ) -> LedgerSchedule:
        pass

    @abstractmethod
    async def retrieve_schedule(
        self, schedule_id: str, expand: Optional[List[str]] = None
    ) -> LedgerSchedule:
        pass

    @abstractmethod
    async def list_subscriptions(
        self, customer_id: str, expand: Optional[List[str]] = None
    ) -> List[LedgerSubscription]:
        """List all of a customer's subscriptions regardless of status."""
        pass

    @abstractmethod
    async def cancel_subscription(
        self, subscription_id: str, prorate: bool = True, invoice_now: bool = True
    ) -> LedgerSubscription:
        pass

    # Usage

    @abstractmethod
    async def create_usage_record(
        self,
        subscription_item_id: str,
        quantity: int,
        timestamp: Any,
        action: str,
        idempotency_key: Optional[str] = None,
    ) -> LedgerUsageRecord:
        """
        Record usage.

        Args:
            timestamp: "now" or a unix timestamp
            action: "increment" or "set"
        """
        pass

    @abstractmethod
    async def list_upcoming_invoice_lines(
        self, customer_id: str
    ) -> List[LedgerInvoiceLine]:
        """Lines of the customer's upcoming invoice, prices and tiers expanded."""
        pass

    # Test clocks

    @abstractmethod
    async def create_test_clock(
        self, name: str, frozen_time: datetime
    ) -> LedgerTestClock:
        pass

    @abstractmethod
    async def advance_test_clock(
        self, clock_id: str, frozen_time: datetime
    ) -> LedgerTestClock:
        pass

    @abstractmethod
    async def retrieve_test_clock(self, clock_id: str) -> LedgerTestClock:
        pass
