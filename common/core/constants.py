from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


# Reserved metadata namespace owned by the control plane on ledger objects.
METADATA_PREFIX = "entitle."

# Prefix applied to every id the control plane assigns on the ledger.
ID_PREFIX = "entitle__"

# Ledger hard limit on items per schedule phase.
MAX_PHASE_ITEMS = 20

# Ledger limit on lookup_keys per price list request.
LOOKUP_BATCH_SIZE = 10

# Largest price precision the ledger accepts for unit_amount_decimal.
MAX_PRICE_DECIMALS = 12
