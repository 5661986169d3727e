"""Cache key generators for control package."""

from typing import NamedTuple


class OrgKey(NamedTuple):
    """Identity cache key: an org is unique per account and clock."""

    account: str
    clock: str
    org: str


def org_key(account: str, clock: str, org: str) -> OrgKey:
    """Generate cache key for an org's customer id."""
    return OrgKey(account or "", clock or "", org)
