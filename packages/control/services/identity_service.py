"""
Service mapping orgs to ledger customers.
"""

from typing import Any, Dict, List, Optional

from common.core.config import settings
from common.core.exceptions import ValidationError
from common.core.telemetry import trace_span, get_logger
from common.providers.caching import MemoLoader
from packages.control.cache_keys import OrgKey, org_key
from packages.control.clock_context import current_clock
from packages.control.errors import InvalidEmail, InvalidMetadata, OrgNotFound
from packages.control.ids import META_ORG, is_reserved_key
from packages.control.models.domain.phase import Org, OrgInfo
from packages.ledger.errors import LedgerError
from packages.ledger.interface import LedgerInterface

logger = get_logger(__name__)


def validate_org(org: str) -> None:
    if not org.startswith("org:"):
        raise ValidationError('org must be prefixed with "org:"')


def org_info_params(info: Optional[OrgInfo]) -> Dict[str, Any]:
    """Customer fields for info. Raises InvalidMetadata for reserved keys."""
    if info is None:
        return {}
    params: Dict[str, Any] = {}
    for field in ("email", "name", "phone", "description"):
        value = getattr(info, field)
        if value:
            params[field] = value
    for key in info.metadata:
        if is_reserved_key(key):
            raise InvalidMetadata(f"invalid metadata: reserved key {key!r}")
    if info.metadata:
        params["metadata"] = dict(info.metadata)
    return params


class IdentityService:
    """
    Resolves and creates the ledger customer behind each org.

    Lookups are memoized per (account, clock, org); concurrent lookups or
    creates for the same org share a single ledger request.
    """

    def __init__(
        self,
        ledger: LedgerInterface,
        cache: Optional[MemoLoader[OrgKey, str]] = None,
    ):
        self.ledger = ledger
        self.cache = cache or MemoLoader(capacity=settings.org_cache_size)

    def _key(self, org: str) -> OrgKey:
        return org_key(self.ledger.account_id, current_clock() or "", org)

    @trace_span
    async def resolve(self, org: str) -> str:
        """
        Return the customer id for org.

        Raises:
            ValidationError: org is not prefixed with "org:"
            OrgNotFound: no customer is tagged with org
        """
        validate_org(org)
        return await self.cache.get(self._key(org), lambda: self._find_customer(org))

    async def _find_customer(self, org: str) -> str:
        logger.info("Org cache miss, looking up customer", extra={"org": org})
        customers = await self.ledger.list_customers(test_clock=current_clock())
        for customer in customers:
            if customer.metadata.get(META_ORG) == org:
                return customer.id
        raise OrgNotFound(org)

    @trace_span
    async def ensure(self, org: str, info: Optional[OrgInfo] = None) -> str:
        """
        Return the customer id for org, creating the customer if needed.

        An existing customer is updated with info when given.
        """
        validate_org(org)
        params = org_info_params(info)

        try:
            customer_id = await self.resolve(org)
        except OrgNotFound:
            return await self.cache.get(
                self._key(org), lambda: self._create_customer(org, params)
            )

        if params:
            try:
                await self.ledger.update_customer(customer_id, params)
            except LedgerError as e:
                if e.code == "email_invalid":
                    raise InvalidEmail() from e
                logger.error(
                    f"Failed to update customer: {str(e)}",
                    extra={"org": org, "customer_id": customer_id, "error": str(e)},
                )
                raise
        return customer_id

    async def _create_customer(self, org: str, params: Dict[str, Any]) -> str:
        params = dict(params)
        params["metadata"] = {**params.get("metadata", {}), META_ORG: org}
        clock = current_clock()
        idempotency_key = f"customer:create:{org}"
        if clock:
            params["test_clock"] = clock
            idempotency_key = f"customer:create:{clock}:{org}"

        try:
            customer = await self.ledger.create_customer(
                params, idempotency_key=idempotency_key
            )
        except LedgerError as e:
            if e.code == "email_invalid":
                raise InvalidEmail() from e
            logger.error(
                f"Failed to create customer: {str(e)}",
                extra={"org": org, "error": str(e)},
            )
            raise

        logger.info(
            "Created customer",
            extra={"org": org, "customer_id": customer.id, "clock": clock},
        )
        return customer.id

    @trace_span
    async def lookup_org(self, org: str) -> OrgInfo:
        """Org details on file with the ledger, uncached. Reserved metadata is omitted."""
        customer_id = await self.resolve(org)
        customer = await self.ledger.retrieve_customer(customer_id)
        return OrgInfo(
            email=customer.email,
            name=customer.name,
            description=customer.description,
            phone=customer.phone,
            metadata={
                k: v for k, v in customer.metadata.items() if not is_reserved_key(k)
            },
        )

    @trace_span
    async def list_orgs(self) -> List[Org]:
        customers = await self.ledger.list_customers(test_clock=current_clock())
        return [
            Org(id=c.metadata[META_ORG], provider_id=c.id, email=c.email)
            for c in customers
            if c.metadata.get(META_ORG)
        ]
