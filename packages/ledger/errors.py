"""
Structured errors surfaced by the remote ledger.

Every SDK error is translated into a LedgerError so callers can classify
failures without importing the SDK. Classification lives in the predicate
functions below rather than at call sites.
"""

from typing import Any, Dict, Optional

from common.core.exceptions import AppException


class LedgerError(AppException):
    """An error response (or transport failure) from the ledger."""

    def __init__(
        self,
        message: str,
        type: Optional[str] = None,
        code: Optional[str] = None,
        param: Optional[str] = None,
        decline_code: Optional[str] = None,
        http_status: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.type = type
        self.code = code
        self.param = param
        self.decline_code = decline_code
        self.http_status = http_status
        self.request_id = request_id

    @classmethod
    def from_body(
        cls,
        body: Optional[Dict[str, Any]],
        http_status: Optional[int] = None,
        request_id: Optional[str] = None,
        fallback_message: str = "",
    ) -> "LedgerError":
        """Build from an API error body of the form {"error": {...}}."""
        error = (body or {}).get("error") or {}
        return cls(
            message=error.get("message") or fallback_message,
            type=error.get("type"),
            code=error.get("code"),
            param=error.get("param"),
            decline_code=error.get("decline_code"),
            http_status=http_status,
            request_id=request_id,
        )

    def __str__(self) -> str:
        parts = [f"ledger: {self.message}"]
        if self.type:
            parts.append(f"type={self.type}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.param:
            parts.append(f"param={self.param}")
        if self.http_status:
            parts.append(f"status={self.http_status}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"LedgerError(type={self.type!r}, code={self.code!r}, "
            f"param={self.param!r}, message={self.message!r})"
        )


class LedgerConnectionError(LedgerError):
    """The request never produced an API response."""

    pass


class InvalidAPIKey(LedgerError):
    """The configured API key was rejected."""

    pass


def is_exists(err: BaseException) -> bool:
    return isinstance(err, LedgerError) and err.code == "resource_already_exists"


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, LedgerError) and err.code == "resource_missing"


def is_invalid_request(err: BaseException) -> bool:
    return isinstance(err, LedgerError) and err.type == "invalid_request_error"


def is_transient(err: BaseException) -> bool:
    """Errors worth retrying with backoff."""
    if isinstance(err, LedgerConnectionError):
        return True
    if not isinstance(err, LedgerError):
        return False
    if err.code in ("lock_timeout", "rate_limit", "idempotency_key_in_use"):
        return True
    if err.type in ("api_error", "rate_limit_error"):
        return True
    return err.http_status is not None and (
        err.http_status == 429 or err.http_status >= 500
    )


def is_schedule_released(err: BaseException) -> bool:
    """
    Report whether err says the subscription schedule was already released.

    The ledger has no structured code for this condition; it is recognised
    only by its English message. Keep every such check behind this function.
    """
    return (
        is_invalid_request(err)
        and "released" in (getattr(err, "message", "") or "")
    )


def is_too_many_items(err: BaseException) -> bool:
    return isinstance(err, LedgerError) and "maximum number of items" in (
        err.message or ""
    )
