"""Typed payout errors.

Every error carries an explicit `kind` so retry decisions never depend on the
wording of a message. `details` holds structured context that ends up in the
failure record.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONCURRENCY = "concurrency"
    NOT_FOUND = "not_found"
    ELIGIBILITY = "eligibility"
    NETWORK_TIMEOUT = "network_timeout"
    RATE_LIMITED = "rate_limited"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GATEWAY_REJECTED = "gateway_rejected"
    RECONCILIATION_REQUIRED = "reconciliation_required"
    INTERNAL = "internal"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK_TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.TEMPORARILY_UNAVAILABLE,
        ErrorKind.INSUFFICIENT_FUNDS,
    }
)


class PayoutError(Exception):
    """Base class for every failure the payout subsystem reports."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable, "details": self.details}


class ValidationError(PayoutError):
    """Bad amount or parameters; rejected before any side effect."""

    kind = ErrorKind.VALIDATION


class ConcurrencyError(PayoutError):
    """Another payout for the same vendor is in flight."""

    kind = ErrorKind.CONCURRENCY


class NotFoundError(PayoutError):
    kind = ErrorKind.NOT_FOUND


class EligibilityError(PayoutError):
    """Vendor cannot be paid this cycle (status, flag, hold, nothing to pay)."""

    kind = ErrorKind.ELIGIBILITY


class GatewayError(PayoutError):
    """Transfer gateway failure, tagged retryable or permanent by `kind`."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.GATEWAY_REJECTED,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.kind = kind
        self.status_code = status_code


class ReconciliationRequired(PayoutError):
    """Funds may have moved but the payout did not complete; needs an operator."""

    kind = ErrorKind.RECONCILIATION_REQUIRED

    def __init__(self, message: str, payout_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.payout_id = payout_id
