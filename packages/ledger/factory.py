"""
Factory for building ledger instances.
"""

from typing import Optional

from common.core.config import Settings, settings as default_settings
from packages.ledger.interface import LedgerInterface
from packages.ledger.stripe_ledger import StripeLedger


def get_ledger(
    settings: Optional[Settings] = None,
    api_key: Optional[str] = None,
    account_id: Optional[str] = None,
) -> LedgerInterface:
    """
    Build a ledger from configuration.

    Returns a fresh instance on every call; callers own and inject it.

    Args:
        settings: Settings to read from (defaults to the process settings)
        api_key: Overrides settings.stripe_secret_key
        account_id: Overrides settings.stripe_account_id
    """
    settings = settings or default_settings
    return StripeLedger(
        api_key=api_key or settings.stripe_secret_key,
        api_version=settings.stripe_api_version,
        account_id=account_id or settings.stripe_account_id,
        key_prefix=settings.stripe_key_prefix,
    )
