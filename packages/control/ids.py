"""Ledger identifiers and metadata keys owned by the control plane."""

from common.core.constants import ID_PREFIX, METADATA_PREFIX

META_ORG = METADATA_PREFIX + "org"
META_FEATURE = METADATA_PREFIX + "feature"
META_PLAN_TITLE = METADATA_PREFIX + "plan_title"
META_TITLE = METADATA_PREFIX + "title"
META_LIMIT = METADATA_PREFIX + "limit"
META_SUBSCRIPTION = METADATA_PREFIX + "subscription"

# The schedule the control plane manages for each org.
DEFAULT_SCHEDULE_NAME = "default"


def make_id(*parts: str) -> str:
    """
    Join parts with "__" and replace anything that is not a letter, digit
    or underscore with "-", under the control plane id prefix.

        make_id("feature:x@plan:free@0") == "entitle__feature-x-plan-free-0"
    """
    joined = "__".join(parts)
    return ID_PREFIX + "".join(
        c if c == "_" or c.isalnum() else "-" for c in joined
    )


def is_reserved_key(key: str) -> bool:
    return key.startswith(METADATA_PREFIX)
