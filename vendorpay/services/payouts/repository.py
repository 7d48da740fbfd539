"""Query shapes and guarded writes over the payout tables.

Functions take an open session and never commit; the caller owns the
transaction boundary.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import aliased

from vendorpay.common.errors import RETRYABLE_KINDS
from vendorpay.common.state_machine import FAILED, RECONCILIATION_REQUIRED, validate_transition
from vendorpay.services.payouts.models import (
    ENTRY_COMPLETED,
    HOLD_ACTIVE,
    HOLD_LIFTED,
    PAYOUT_STATUS_PAID_OUT,
    UNPAID_PAYOUT_STATUSES,
    VENDOR_ACTIVE,
    FailureRecord,
    LedgerEntry,
    PayoutHold,
    PayoutRecord,
    PayoutTimeline,
    VendorAccount,
)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from drivers without tz support."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_vendor(db, vendor_account_id: str) -> VendorAccount | None:
    return db.get(VendorAccount, vendor_account_id)


def list_schedulable_vendors(db) -> list[VendorAccount]:
    """Active, payout-enabled vendors; the source for registry rehydration."""

    return list(
        db.execute(
            select(VendorAccount)
            .where(VendorAccount.status == VENDOR_ACTIVE, VendorAccount.payouts_enabled.is_(True))
            .order_by(VendorAccount.created_at, VendorAccount.id)
        )
        .scalars()
        .all()
    )


def _eligible_filter(vendor_account_id: str, now: datetime, hold_period_days: int, currency: str | None):
    conditions = [
        LedgerEntry.vendor_account_id == vendor_account_id,
        LedgerEntry.status == ENTRY_COMPLETED,
        LedgerEntry.payout_status.in_(UNPAID_PAYOUT_STATUSES),
    ]
    if currency is not None:
        conditions.append(LedgerEntry.currency == currency.lower())
    if hold_period_days > 0:
        conditions.append(LedgerEntry.created_at <= now - timedelta(days=hold_period_days))
    return conditions


def eligible_entries(
    db, vendor_account_id: str, now: datetime, hold_period_days: int = 0, currency: str | None = None
) -> list[LedgerEntry]:
    """Completed, unpaid entries past the hold period, oldest first; optionally one currency only."""

    return list(
        db.execute(
            select(LedgerEntry)
            .where(*_eligible_filter(vendor_account_id, now, hold_period_days, currency))
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        .scalars()
        .all()
    )


def pending_amount(
    db, vendor_account_id: str, now: datetime, hold_period_days: int = 0, currency: str | None = None
) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.net_amount), 0)).where(
            *_eligible_filter(vendor_account_id, now, hold_period_days, currency)
        )
    ).scalar_one()
    return int(total or 0)


def active_holds(db, vendor_account_id: str) -> list[PayoutHold]:
    return list(
        db.execute(
            select(PayoutHold)
            .where(PayoutHold.vendor_account_id == vendor_account_id, PayoutHold.status == HOLD_ACTIVE)
            .order_by(PayoutHold.placed_at)
        )
        .scalars()
        .all()
    )


def lift_holds(holds: list[PayoutHold], now: datetime, reason: str | None, lifted_by: str | None) -> None:
    for hold in holds:
        hold.status = HOLD_LIFTED
        hold.lifted_at = now
        hold.lift_reason = reason
        hold.lifted_by = lifted_by


def release_expired_holds(db, now: datetime) -> list[PayoutHold]:
    """Lift active holds whose release date has passed; returns the lifted rows."""

    expired = list(
        db.execute(
            select(PayoutHold)
            .where(
                PayoutHold.status == HOLD_ACTIVE,
                PayoutHold.release_date.is_not(None),
                PayoutHold.release_date <= now,
            )
            .order_by(PayoutHold.release_date)
        )
        .scalars()
        .all()
    )
    lift_holds(expired, now, "Automatic release - hold expired", "system")
    return expired


def hold_history(
    db, vendor_account_id: str, limit: int = 50, offset: int = 0, include_active: bool = True
) -> list[PayoutHold]:
    query = select(PayoutHold).where(PayoutHold.vendor_account_id == vendor_account_id)
    if not include_active:
        query = query.where(PayoutHold.status != HOLD_ACTIVE)
    query = query.order_by(PayoutHold.placed_at.desc(), PayoutHold.id).limit(limit).offset(offset)
    return list(db.execute(query).scalars().all())


def open_reconciliations(db, vendor_account_id: str) -> list[PayoutRecord]:
    return list(
        db.execute(
            select(PayoutRecord).where(
                PayoutRecord.vendor_account_id == vendor_account_id,
                PayoutRecord.status == RECONCILIATION_REQUIRED,
            )
        )
        .scalars()
        .all()
    )


def retryable_failed_payout(db, vendor_account_id: str, currency: str) -> PayoutRecord | None:
    """Latest failed attempt whose transfer may be retried and that no later attempt has taken over."""

    successor = aliased(PayoutRecord)
    return (
        db.execute(
            select(PayoutRecord)
            .where(
                PayoutRecord.vendor_account_id == vendor_account_id,
                PayoutRecord.currency == currency,
                PayoutRecord.status == FAILED,
                PayoutRecord.failure_kind.in_([kind.value for kind in RETRYABLE_KINDS]),
                ~select(successor.id).where(successor.retry_of_payout_id == PayoutRecord.id).exists(),
            )
            .order_by(PayoutRecord.created_at.desc(), PayoutRecord.id)
            .limit(1)
        )
        .scalars()
        .first()
    )


def entries_by_ids(db, entry_ids: list[str]) -> list[LedgerEntry]:
    """Entries in FIFO order, whatever their current payout status."""

    return list(
        db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id.in_(entry_ids))
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        .scalars()
        .all()
    )


def last_payout_at(db, vendor_account_id: str) -> datetime | None:
    value = db.execute(
        select(func.max(PayoutRecord.created_at)).where(PayoutRecord.vendor_account_id == vendor_account_id)
    ).scalar_one()
    return as_utc(value)


def payout_history(
    db,
    vendor_account_id: str,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PayoutRecord]:
    """Newest-first payout records with optional status/date filters."""

    query = select(PayoutRecord).where(PayoutRecord.vendor_account_id == vendor_account_id)
    if status:
        query = query.where(PayoutRecord.status == status)
    if start_date:
        query = query.where(PayoutRecord.created_at >= start_date)
    if end_date:
        query = query.where(PayoutRecord.created_at <= end_date)
    query = query.order_by(PayoutRecord.created_at.desc(), PayoutRecord.id).offset(offset).limit(limit)
    return list(db.execute(query).scalars().all())


def payout_statistics(db, vendor_account_id: str, now: datetime) -> dict:
    """Aggregate totals, status breakdown and pending amount for one vendor."""

    rows = db.execute(
        select(
            PayoutRecord.status,
            func.count(PayoutRecord.id).label("count"),
            func.coalesce(func.sum(PayoutRecord.amount), 0).label("amount"),
            func.coalesce(func.sum(PayoutRecord.fee_amount), 0).label("fees"),
        )
        .where(PayoutRecord.vendor_account_id == vendor_account_id)
        .group_by(PayoutRecord.status)
    ).all()
    total_payouts = sum(int(row.count) for row in rows)
    total_amount = sum(int(row.amount) for row in rows)
    vendor = get_vendor(db, vendor_account_id)
    hold_days = vendor.hold_period_days if vendor else 0
    currency = vendor.currency if vendor else None
    return {
        "vendor_account_id": vendor_account_id,
        "total_payouts": total_payouts,
        "total_amount": total_amount,
        "total_fees": sum(int(row.fees) for row in rows),
        "pending_amount": pending_amount(db, vendor_account_id, now, hold_days, currency=currency),
        "status_breakdown": {row.status: int(row.count) for row in rows},
        "average_payout_amount": round(total_amount / total_payouts) if total_payouts else 0,
    }


def transition_payout(db, payout: PayoutRecord, new_status: str, reason: str, **values) -> None:
    """Apply one validated status transition with optimistic concurrency.

    The write is guarded by `(id, status, state_version)` so a stale concurrent
    update cannot succeed; a timeline row records the move.
    """

    validate_transition(payout.status, new_status)
    from_status = payout.status
    current_version = payout.state_version
    result = db.execute(
        update(PayoutRecord)
        .where(
            PayoutRecord.id == payout.id,
            PayoutRecord.status == from_status,
            PayoutRecord.state_version == current_version,
        )
        .values(status=new_status, state_version=current_version + 1, updated_at=datetime.now(timezone.utc), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RuntimeError(
            f"optimistic concurrency conflict for payout {payout.id} (expected version {current_version})"
        )
    payout.status = new_status
    payout.state_version = current_version + 1
    for key, value in values.items():
        setattr(payout, key, value)
    db.add(PayoutTimeline(payout_id=payout.id, from_state=from_status, to_state=new_status, reason=reason))


def mark_entries_paid_out(db, entry_ids: list[str], payout_id: str, now: datetime) -> None:
    """Move entries to `paid_out` exactly once; any already-paid entry aborts."""

    if not entry_ids:
        return
    result = db.execute(
        update(LedgerEntry)
        .where(LedgerEntry.id.in_(entry_ids), LedgerEntry.payout_status.in_(UNPAID_PAYOUT_STATUSES))
        .values(payout_status=PAYOUT_STATUS_PAID_OUT, payout_id=payout_id, paid_out_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(entry_ids):
        raise RuntimeError(
            f"ledger entries changed under payout {payout_id}: "
            f"expected {len(entry_ids)} unpaid, updated {result.rowcount}"
        )


def record_failure(
    db,
    vendor_account_id: str,
    error_kind: str,
    error_message: str,
    error_details: dict,
    retry_count: int = 0,
    requires_manual_review: bool = False,
    payout_id: str | None = None,
) -> FailureRecord:
    failure = FailureRecord(
        vendor_account_id=vendor_account_id,
        payout_id=payout_id,
        error_kind=error_kind,
        error_message=error_message,
        error_details=error_details,
        retry_count=retry_count,
        requires_manual_review=requires_manual_review,
    )
    db.add(failure)
    return failure


def manual_review_failures(db, limit: int = 100) -> list[FailureRecord]:
    return list(
        db.execute(
            select(FailureRecord)
            .where(FailureRecord.requires_manual_review.is_(True))
            .order_by(FailureRecord.created_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def all_open_reconciliations(db, limit: int = 100) -> list[PayoutRecord]:
    """Payouts parked after a transfer succeeded but the payout did not, oldest first."""

    return list(
        db.execute(
            select(PayoutRecord)
            .where(PayoutRecord.status == RECONCILIATION_REQUIRED)
            .order_by(PayoutRecord.created_at.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
