"""Error classification and retry backoff."""

import asyncio
from datetime import timedelta

import pytest

from vendorpay.common.errors import (
    ConcurrencyError,
    EligibilityError,
    ErrorKind,
    GatewayError,
    NotFoundError,
    ReconciliationRequired,
    ValidationError,
)
from vendorpay.services.payouts.retry import Disposition, backoff_delay, classify, error_kind, is_retryable


@pytest.mark.parametrize(
    "kind",
    [
        ErrorKind.NETWORK_TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.TEMPORARILY_UNAVAILABLE,
        ErrorKind.INSUFFICIENT_FUNDS,
    ],
)
def test_transient_gateway_kinds_retry(kind):
    assert classify(GatewayError("boom", kind)) is Disposition.RETRY


def test_rejected_gateway_call_is_fatal():
    assert classify(GatewayError("invalid account", ErrorKind.GATEWAY_REJECTED)) is Disposition.FATAL


def test_message_text_does_not_drive_classification():
    """A rejection mentioning 'timeout' in its text is still permanent."""

    assert not is_retryable(GatewayError("network timeout while validating", ErrorKind.GATEWAY_REJECTED))


def test_dispositions_by_error_type():
    assert classify(ConcurrencyError("busy")) is Disposition.DEFER
    assert classify(EligibilityError("on hold")) is Disposition.RESCHEDULE
    assert classify(ReconciliationRequired("ambiguous", payout_id="p1")) is Disposition.ESCALATE
    assert classify(ValidationError("bad")) is Disposition.FATAL
    assert classify(NotFoundError("gone")) is Disposition.FATAL
    assert classify(RuntimeError("unexpected")) is Disposition.FATAL


def test_untyped_timeouts_count_as_network_timeouts():
    assert error_kind(asyncio.TimeoutError()) is ErrorKind.NETWORK_TIMEOUT
    assert classify(TimeoutError()) is Disposition.RETRY


def test_backoff_doubles():
    """base * 2^(n-1): 1h, 2h, 4h."""

    base = 3_600_000
    assert backoff_delay(1, base) == timedelta(hours=1)
    assert backoff_delay(2, base) == timedelta(hours=2)
    assert backoff_delay(3, base) == timedelta(hours=4)
