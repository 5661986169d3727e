class AppException(Exception):
    """Root of every error raised by the control plane."""


class NotFoundError(AppException):
    """An org, feature or ledger object does not exist."""


class ValidationError(AppException):
    """Input was rejected before reaching the ledger."""


class ConflictError(AppException):
    """The object already exists with different contents."""
