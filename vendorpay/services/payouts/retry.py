"""Failure classification and retry backoff for scheduled payouts."""

from datetime import timedelta
from enum import Enum

from vendorpay.common.errors import (
    RETRYABLE_KINDS,
    ConcurrencyError,
    EligibilityError,
    ErrorKind,
    PayoutError,
    ReconciliationRequired,
)


class Disposition(str, Enum):
    RETRY = "retry"  # back off and try again
    FATAL = "fatal"  # stop; needs an operator
    DEFER = "defer"  # leave the job due for the next tick
    RESCHEDULE = "reschedule"  # skip this cycle, resume at the next normal slot
    ESCALATE = "escalate"  # ambiguous money movement; manual review, then next slot


def error_kind(error: BaseException) -> ErrorKind:
    if isinstance(error, PayoutError):
        return error.kind
    if isinstance(error, TimeoutError):
        return ErrorKind.NETWORK_TIMEOUT
    return ErrorKind.INTERNAL


def is_retryable(error: BaseException) -> bool:
    return error_kind(error) in RETRYABLE_KINDS


def classify(error: BaseException) -> Disposition:
    """Map an error to what the scheduler should do with the job.

    Decided purely on the error's kind tag, never on message text.
    """

    if isinstance(error, ConcurrencyError):
        return Disposition.DEFER
    if isinstance(error, ReconciliationRequired):
        return Disposition.ESCALATE
    if isinstance(error, EligibilityError):
        return Disposition.RESCHEDULE
    if is_retryable(error):
        return Disposition.RETRY
    return Disposition.FATAL


def backoff_delay(retry_count: int, base_delay_ms: int) -> timedelta:
    """`base * 2^(retry_count-1)`: 1x, 2x, 4x ... for retry 1, 2, 3 ..."""

    exponent = max(0, retry_count - 1)
    return timedelta(milliseconds=base_delay_ms * (2**exponent))
