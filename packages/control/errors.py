"""
Control plane error taxonomy.

Input errors are raised before any ledger mutation. Ledger errors that
are not reclassified here propagate as packages.ledger.LedgerError.
"""

from common.core.exceptions import (
    AppException,
    ConflictError,
    NotFoundError,
    ValidationError,
)


class OrgNotFound(NotFoundError):
    """No ledger customer is tagged with the org."""

    def __init__(self, org: str = ""):
        super().__init__(f"org not found: {org!r}" if org else "org not found")
        self.org = org


class FeatureNotFound(NotFoundError):
    """A feature ref did not resolve to a published catalog entry."""

    def __init__(self, message: str = "feature not found"):
        super().__init__(message)


class NoFeatures(FeatureNotFound):
    """A ref expanded to no catalog entries."""

    pass


class FeatureNotMetered(ValidationError):
    """Usage was reported for a licensed feature."""

    def __init__(self, message: str = "feature is not metered"):
        super().__init__(message)


class PlanExists(ConflictError):
    """The plan was already published; plans are immutable."""

    def __init__(self, message: str = "plan already exists"):
        super().__init__(message)


class FeatureExists(ConflictError):
    """The catalog entry was already published."""

    def __init__(self, message: str = "feature already exists"):
        super().__init__(message)


class InvalidMetadata(ValidationError):
    """Customer metadata used the reserved key prefix."""

    pass


class InvalidPrice(ValidationError):
    """A price exceeds the ledger's decimal precision."""

    pass


class InvalidEmail(ValidationError):
    """The ledger rejected a customer email."""

    def __init__(self, message: str = "invalid email"):
        super().__init__(message)


class InvalidPhase(ValidationError):
    """A phase list is malformed (e.g. cancellation before the last phase)."""

    pass


class TooManyItems(ValidationError):
    """A phase has more items than a schedule phase can hold."""

    def __init__(self, message: str = "too many subscription items"):
        super().__init__(message)


class ClockFailed(AppException):
    """The ledger could not advance a simulated clock."""

    pass


class UnexpectedMissingOrg(AppException):
    """
    A customer that should exist was reported missing by the ledger.

    Seen in test mode when test data was cleared while the customer create
    idempotency key is still remembered by the ledger.
    """

    def __init__(self, message: str = "unexpected missing org"):
        super().__init__(message)
