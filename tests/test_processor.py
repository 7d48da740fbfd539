"""End-to-end processor runs against SQLite and a scripted gateway."""

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import NOW, add_entries, add_vendor
from vendorpay.common.errors import ConcurrencyError, ErrorKind, GatewayError, ValidationError
from vendorpay.services.payouts.locks import VendorLockTable
from vendorpay.services.payouts.models import (
    PAYOUT_STATUS_ELIGIBLE,
    PAYOUT_STATUS_PAID_OUT,
    FailureRecord,
    LedgerEntry,
    OutboxEvent,
    PayoutHold,
    PayoutLineItem,
    PayoutRecord,
    PayoutTimeline,
)
from vendorpay.services.payouts.processor import PayoutProcessor, batch_idempotency_key


@pytest.fixture
def processor(session_factory, gateway, config, clock):
    return PayoutProcessor(session_factory, gateway, config, locks=VendorLockTable(), clock=clock)


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def _entry_statuses(session_factory, entry_ids):
    with session_factory() as db:
        return [db.get(LedgerEntry, entry_id).payout_status for entry_id in entry_ids]


def _failure_flags(session_factory):
    with session_factory() as db:
        rows = db.execute(select(FailureRecord.error_kind, FailureRecord.requires_manual_review)).all()
    return sorted(tuple(row) for row in rows)


def test_successful_payout_applies_fee_and_marks_entries(processor, session_factory, gateway):
    """Pending 100.00 at 5% -> fee 5.00, payout 95.00, entry paid out."""

    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [10_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 10_000))

    assert outcome.success
    assert outcome.status == "in_transit"
    assert (outcome.amount, outcome.fee_amount) == (9_500, 500)
    assert gateway.transfers[0]["amount"] == 9_500
    assert gateway.transfers[0]["metadata"]["platform_fee"] == 500
    with session_factory() as db:
        payout = db.get(PayoutRecord, outcome.payout_id)
        assert payout.status == "in_transit"
        assert payout.external_payout_ref == "po_1"
        assert payout.external_transfer_ref == "tr_1"
        assert sum(item.net_amount for item in payout.line_items) == payout.amount
        entry = db.get(LedgerEntry, entry_ids[0])
        assert entry.payout_status == PAYOUT_STATUS_PAID_OUT
        assert entry.payout_id == payout.id
        states = [
            row.to_state
            for row in db.execute(select(PayoutTimeline).where(PayoutTimeline.payout_id == payout.id)).scalars()
        ]
        assert sorted(states) == ["in_transit", "processing"]
        topics = [row.topic for row in db.execute(select(OutboxEvent)).scalars()]
        assert topics == ["payouts.in_transit"]


def test_paid_gateway_status_maps_to_paid(processor, session_factory, gateway):
    gateway.payout_status = "paid"
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.status == "paid"


def test_idempotency_keys_derive_from_entry_set(processor, session_factory, gateway):
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [3_000, 2_000])

    asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    key = batch_idempotency_key(vendor_id, entry_ids)
    assert gateway.transfers[0]["idempotency_key"] == f"{key}:transfer"
    assert gateway.payouts[0]["idempotency_key"] == f"{key}:payout"
    assert gateway.payouts[0]["metadata"]["transfer_id"] == "tr_1"


def test_fifo_selection_stops_at_first_overflow(processor, session_factory):
    """Entries [30, 80, 10] (x100) with request 50 -> only the first is paid."""

    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [3_000, 8_000, 1_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.success
    assert outcome.booking_count == 1
    # Fee recomputed on the selected 3000.
    assert (outcome.amount, outcome.fee_amount) == (2_850, 150)
    assert _entry_statuses(session_factory, entry_ids) == [
        PAYOUT_STATUS_PAID_OUT,
        PAYOUT_STATUS_ELIGIBLE,
        PAYOUT_STATUS_ELIGIBLE,
    ]


def test_line_item_fees_sum_to_payout_fee(processor, session_factory):
    vendor_id = add_vendor(session_factory, fee_percent=Decimal("7.25"))
    add_entries(session_factory, vendor_id, [1_111, 2_222, 3_333])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 6_666))

    with session_factory() as db:
        items = db.execute(select(PayoutLineItem).where(PayoutLineItem.payout_id == outcome.payout_id)).scalars().all()
        assert sum(i.fee_amount for i in items) == outcome.fee_amount
        assert sum(i.net_amount for i in items) == outcome.amount
        assert all(i.gross_amount == i.fee_amount + i.net_amount for i in items)


@pytest.mark.parametrize("amount", [999, 100_000_001, 0])
def test_out_of_range_amounts_rejected_without_records(processor, session_factory, gateway, amount):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    with pytest.raises(ValidationError):
        asyncio.run(processor.process_vendor_payout(vendor_id, amount))

    assert _count(session_factory, PayoutRecord) == 0
    assert _count(session_factory, FailureRecord) == 0
    assert gateway.transfers == []


def test_unsupported_currency_rejected(processor, session_factory):
    vendor_id = add_vendor(session_factory)
    with pytest.raises(ValidationError):
        asyncio.run(processor.process_vendor_payout(vendor_id, 5_000, currency="xyz"))


def test_parallel_callers_one_wins(processor, session_factory, gateway):
    """N concurrent runs for one vendor -> one success, the rest ConcurrencyError."""

    gateway.delay = 0.05
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    async def scenario():
        return await asyncio.gather(
            *(processor.process_vendor_payout(vendor_id, 5_000) for _ in range(5)), return_exceptions=True
        )

    results = asyncio.run(scenario())

    successes = [r for r in results if not isinstance(r, BaseException) and r.success]
    rejected = [r for r in results if isinstance(r, ConcurrencyError)]
    assert len(successes) == 1
    assert len(rejected) == 4
    assert _count(session_factory, PayoutRecord) == 1
    assert len(gateway.transfers) == 1
    assert not processor.locks.is_held(vendor_id)


def test_transfer_ok_payout_failed_requires_reconciliation(processor, session_factory, gateway):
    """Money moved but the bank payout did not: nothing is marked paid."""

    gateway.payout_error = GatewayError("bank rejected", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [5_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert not outcome.success
    assert outcome.status == "reconciliation_required"
    assert outcome.error_kind is ErrorKind.RECONCILIATION_REQUIRED
    assert _entry_statuses(session_factory, entry_ids) == [PAYOUT_STATUS_ELIGIBLE]
    with session_factory() as db:
        payout = db.get(PayoutRecord, outcome.payout_id)
        assert payout.status == "reconciliation_required"
        assert payout.external_transfer_ref == "tr_1"
        failure = db.execute(select(FailureRecord)).scalar_one()
        assert failure.requires_manual_review
        assert failure.error_kind == "reconciliation_required"


def test_open_reconciliation_blocks_next_payout(processor, session_factory, gateway):
    gateway.payout_error = GatewayError("bank rejected", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    gateway.payout_error = None

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.error_kind is ErrorKind.ELIGIBILITY
    assert len(gateway.transfers) == 1
    # Only the parked payout needs a person; the blocked cycle is just recorded.
    assert _failure_flags(session_factory) == [("eligibility", False), ("reconciliation_required", True)]


def test_resume_reconciliation_reuses_keys_and_settles(processor, session_factory, gateway):
    gateway.payout_error = GatewayError("bank unavailable", ErrorKind.TEMPORARILY_UNAVAILABLE)
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [5_000])
    parked = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    gateway.payout_error = None

    outcome = asyncio.run(processor.resume_reconciliation(parked.payout_id))

    assert outcome.success
    assert outcome.payout_id == parked.payout_id
    assert gateway.transfers[0]["idempotency_key"] == gateway.transfers[1]["idempotency_key"]
    assert _entry_statuses(session_factory, entry_ids) == [PAYOUT_STATUS_PAID_OUT]


def test_abandon_reconciliation_releases_entries(processor, session_factory, gateway):
    gateway.payout_error = GatewayError("bank rejected", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [5_000])
    parked = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    outcome = asyncio.run(processor.abandon_reconciliation(parked.payout_id, "transfer reversed manually"))

    assert outcome.status == "failed"
    with session_factory() as db:
        assert db.get(PayoutRecord, parked.payout_id).failure_reason.startswith("abandoned")
    assert _entry_statuses(session_factory, entry_ids) == [PAYOUT_STATUS_ELIGIBLE]


def test_resume_rejects_payout_not_parked(processor, session_factory):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    paid = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    with pytest.raises(ValidationError):
        asyncio.run(processor.resume_reconciliation(paid.payout_id))


def test_transfer_failure_fails_payout_with_retryable_record(processor, session_factory, gateway):
    gateway.transfer_error = GatewayError("slow down", ErrorKind.RATE_LIMITED, status_code=429)
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [5_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert not outcome.success
    assert outcome.retryable
    assert outcome.status == "failed"
    assert gateway.payouts == []
    assert _entry_statuses(session_factory, entry_ids) == [PAYOUT_STATUS_ELIGIBLE]
    with session_factory() as db:
        failure = db.execute(select(FailureRecord)).scalar_one()
        assert failure.error_kind == "rate_limited"
        assert not failure.requires_manual_review
        assert failure.payout_id == outcome.payout_id


def test_gateway_timeout_is_retryable_network_timeout(session_factory, gateway, config, clock):
    gateway.delay = 1.0
    processor = PayoutProcessor(session_factory, gateway, replace(config, processing_timeout_ms=20), clock=clock)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.error_kind is ErrorKind.NETWORK_TIMEOUT
    assert outcome.retryable
    assert not processor.locks.is_held(vendor_id)


@pytest.mark.parametrize(
    "overrides",
    [{"status": "restricted"}, {"payouts_enabled": False}],
)
def test_ineligible_vendor_is_recorded_without_review_flag(processor, session_factory, gateway, overrides):
    vendor_id = add_vendor(session_factory, **overrides)
    add_entries(session_factory, vendor_id, [5_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.error_kind is ErrorKind.ELIGIBILITY
    assert outcome.payout_id is None
    assert gateway.transfers == []
    assert _failure_flags(session_factory) == [("eligibility", False)]


def test_active_hold_blocks_payout(processor, session_factory, gateway):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    with session_factory() as db:
        db.add(PayoutHold(vendor_account_id=vendor_id, reason="chargeback review", placed_at=NOW))
        db.commit()

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.error_kind is ErrorKind.ELIGIBILITY
    assert "chargeback review" in outcome.error.message
    assert _failure_flags(session_factory) == [("eligibility", False)]


def test_unknown_vendor_is_not_found(processor):
    outcome = asyncio.run(processor.process_vendor_payout("missing", 5_000))
    assert outcome.error_kind is ErrorKind.NOT_FOUND


def test_no_entries_fit_is_eligibility_failure(processor, session_factory, gateway):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [8_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.error_kind is ErrorKind.ELIGIBILITY
    assert _count(session_factory, PayoutRecord) == 0


def test_hold_period_excludes_recent_entries(processor, session_factory):
    vendor_id = add_vendor(session_factory, hold_period_days=7)
    add_entries(session_factory, vendor_id, [2_000], age_days=10)
    add_entries(session_factory, vendor_id, [3_000], age_days=1)

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))

    assert outcome.booking_count == 1
    assert outcome.amount + outcome.fee_amount == 2_000


def test_rejected_transfer_is_not_carried_into_next_attempt(processor, session_factory, gateway):
    gateway.transfer_error = GatewayError("account closed", ErrorKind.GATEWAY_REJECTED, status_code=400)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    rejected = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    add_entries(session_factory, vendor_id, [2_000])
    gateway.transfer_error = None

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 7_000))

    assert outcome.success
    assert outcome.booking_count == 2
    assert gateway.transfers[0]["idempotency_key"] != gateway.transfers[1]["idempotency_key"]
    with session_factory() as db:
        assert db.get(PayoutRecord, outcome.payout_id).retry_of_payout_id is None
        assert db.get(PayoutRecord, rejected.payout_id).failure_kind == "gateway_rejected"


def test_retry_smaller_than_failed_attempt_is_refused(processor, session_factory, gateway):
    gateway.transfer_error = GatewayError("slow down", ErrorKind.RATE_LIMITED, status_code=429)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    gateway.transfer_error = None

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 3_000))

    assert outcome.error_kind is ErrorKind.ELIGIBILITY
    assert len(gateway.transfers) == 1
    assert outcome.error.details["required_amount"] == 5_000


def test_retry_falls_back_to_fresh_selection_when_entries_were_paid(processor, session_factory, gateway):
    gateway.transfer_error = GatewayError("slow down", ErrorKind.RATE_LIMITED, status_code=429)
    vendor_id = add_vendor(session_factory)
    first = add_entries(session_factory, vendor_id, [5_000])
    asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    with session_factory() as db:
        db.get(LedgerEntry, first[0]).payout_status = PAYOUT_STATUS_PAID_OUT
        db.commit()
    add_entries(session_factory, vendor_id, [3_000])
    gateway.transfer_error = None

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 3_000))

    assert outcome.success
    assert gateway.transfers[1]["amount"] == 2_850
    assert gateway.transfers[0]["idempotency_key"] != gateway.transfers[1]["idempotency_key"]


def test_vendor_without_fee_uses_configured_default(session_factory, gateway, config, clock):
    processor = PayoutProcessor(session_factory, gateway, replace(config, default_fee_percent=2.5), clock=clock)
    vendor_id = add_vendor(session_factory, fee_percent=None)
    add_entries(session_factory, vendor_id, [10_000])

    outcome = asyncio.run(processor.process_vendor_payout(vendor_id, 10_000))

    assert (outcome.amount, outcome.fee_amount) == (9_750, 250)


def test_abandoned_payout_cannot_be_resumed(processor, session_factory, gateway):
    gateway.payout_error = GatewayError("bank rejected", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    entry_ids = add_entries(session_factory, vendor_id, [5_000])
    parked = asyncio.run(processor.process_vendor_payout(vendor_id, 5_000))
    asyncio.run(processor.abandon_reconciliation(parked.payout_id, "transfer reversed manually"))
    gateway.payout_error = None

    with pytest.raises(ValidationError):
        asyncio.run(processor.resume_reconciliation(parked.payout_id))
    with pytest.raises(ValidationError):
        asyncio.run(processor.abandon_reconciliation(parked.payout_id, "again"))

    assert len(gateway.transfers) == 1
    assert _entry_statuses(session_factory, entry_ids) == [PAYOUT_STATUS_ELIGIBLE]
