"""JSON log records and correlation-id binding."""

import io
import json
import logging

from vendorpay.common.logging import build_handler, log_context, vendor_id_ctx


def _capture():
    stream = io.StringIO()
    log = logging.getLogger("vendorpay.test_logging")
    log.handlers = [build_handler(stream, service_name="payouts-test")]
    log.propagate = False
    log.setLevel(logging.INFO)
    return log, stream


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_bound_ids_appear_only_inside_context():
    log, stream = _capture()

    with log_context(vendor_id="v-1", payout_id="p-1"):
        log.info("payout_settled")
    log.info("payout_scheduler_started")

    inside, outside = _records(stream)
    assert inside["message"] == "payout_settled"
    assert (inside["vendor_id"], inside["payout_id"]) == ("v-1", "p-1")
    assert inside["service"] == "payouts-test"
    assert inside["level"] == "INFO"
    assert "vendor_id" not in outside
    assert "payout_id" not in outside


def test_nested_contexts_restore_outer_ids():
    with log_context(vendor_id="outer"):
        with log_context(vendor_id="inner"):
            assert vendor_id_ctx.get() == "inner"
        assert vendor_id_ctx.get() == "outer"
    assert vendor_id_ctx.get() == ""


def test_explicit_extra_wins_over_bound_id():
    log, stream = _capture()

    with log_context(vendor_id="bound"):
        log.info("payout_lock_held", extra={"vendor_id": "explicit"})

    assert _records(stream)[0]["vendor_id"] == "explicit"
