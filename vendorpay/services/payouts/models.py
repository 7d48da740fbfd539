"""Payout service database models.

Vendor accounts are the source of truth for schedule configuration; ledger
entries, payout records, line items and failures are the durable audit trail.
The scheduled-job registry is not stored here (it is rebuilt at startup).
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendorpay.common.db import Base, JSONType


# Vendor account statuses.
VENDOR_PENDING = "pending"
VENDOR_ACTIVE = "active"
VENDOR_RESTRICTED = "restricted"
VENDOR_DISABLED = "disabled"

# Ledger entry settlement and payout statuses.
ENTRY_PENDING = "pending"
ENTRY_COMPLETED = "completed"
ENTRY_FAILED = "failed"
PAYOUT_STATUS_PENDING = "pending"
PAYOUT_STATUS_ELIGIBLE = "eligible"
PAYOUT_STATUS_PAID_OUT = "paid_out"
UNPAID_PAYOUT_STATUSES = (PAYOUT_STATUS_PENDING, PAYOUT_STATUS_ELIGIBLE)

HOLD_ACTIVE = "active"
HOLD_LIFTED = "lifted"
HOLD_TYPES = ("manual", "automatic", "dispute", "compliance", "risk")


class VendorAccount(Base):
    """A vendor's connected payout account and its schedule settings."""

    __tablename__ = "vendor_accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    external_account_ref: Mapped[str] = mapped_column(String, unique=True, index=True)
    status: Mapped[str] = mapped_column(String, default=VENDOR_PENDING, index=True)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    # None: use the platform default fee.
    fee_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    schedule_interval: Mapped[str] = mapped_column(String, default="weekly")
    minimum_payout_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hold_period_days: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class LedgerEntry(Base):
    """A settled customer payment owed to a vendor."""

    __tablename__ = "ledger_entries"
    __table_args__ = (CheckConstraint("net_amount = gross_amount - fee_amount", name="ck_ledger_net"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    vendor_account_id: Mapped[str] = mapped_column(ForeignKey("vendor_accounts.id"), index=True)
    gross_amount: Mapped[int] = mapped_column(Integer)
    fee_amount: Mapped[int] = mapped_column(Integer, default=0)
    net_amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    status: Mapped[str] = mapped_column(String, default=ENTRY_PENDING, index=True)
    payout_status: Mapped[str] = mapped_column(String, default=PAYOUT_STATUS_PENDING, index=True)
    payout_id: Mapped[str | None] = mapped_column(ForeignKey("payout_records.id"), nullable=True, index=True)
    paid_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PayoutRecord(Base):
    """One attempted or executed transfer of a vendor's accumulated earnings."""

    __tablename__ = "payout_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    vendor_account_id: Mapped[str] = mapped_column(ForeignKey("vendor_accounts.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    fee_amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String, index=True)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    booking_count: Mapped[int] = mapped_column(Integer, default=0)
    idempotency_key: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    external_transfer_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    external_payout_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    arrival_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    failure_kind: Mapped[str | None] = mapped_column(String, nullable=True)
    # Set when this attempt re-sends a retryably failed one with the same entries and key.
    retry_of_payout_id: Mapped[str | None] = mapped_column(
        ForeignKey("payout_records.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    line_items: Mapped[list["PayoutLineItem"]] = relationship(back_populates="payout", lazy="selectin")


class PayoutLineItem(Base):
    """Snapshot of one ledger entry's share of a payout; never mutated."""

    __tablename__ = "payout_line_items"
    __table_args__ = (UniqueConstraint("payout_id", "ledger_entry_id", name="uq_line_item_entry"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payout_id: Mapped[str] = mapped_column(ForeignKey("payout_records.id"), index=True)
    ledger_entry_id: Mapped[str] = mapped_column(ForeignKey("ledger_entries.id"), index=True)
    gross_amount: Mapped[int] = mapped_column(Integer)
    fee_amount: Mapped[int] = mapped_column(Integer)
    net_amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    payout: Mapped[PayoutRecord] = relationship(back_populates="line_items")


class PayoutTimeline(Base):
    """Immutable audit trail of every payout status transition."""

    __tablename__ = "payout_timeline"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payout_id: Mapped[str] = mapped_column(ForeignKey("payout_records.id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PayoutHold(Base):
    """Administrative block on a vendor's payouts while `status == active`."""

    __tablename__ = "payout_holds"
    __table_args__ = (
        Index(
            "ux_payout_holds_one_active",
            "vendor_account_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    vendor_account_id: Mapped[str] = mapped_column(ForeignKey("vendor_accounts.id"), index=True)
    hold_type: Mapped[str] = mapped_column(String, default="manual")
    reason: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default=HOLD_ACTIVE, index=True)
    placed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    # Auto-released by the scheduler tick once passed; None holds until lifted.
    release_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lifted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lift_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    lifted_by: Mapped[str | None] = mapped_column(String, nullable=True)


class FailureRecord(Base):
    """Append-only record of a failed payout attempt or exhausted job."""

    __tablename__ = "payout_failures"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    vendor_account_id: Mapped[str] = mapped_column(String, index=True)
    payout_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    error_kind: Mapped[str] = mapped_column(String, index=True)
    error_message: Mapped[str] = mapped_column(String)
    error_details: Mapped[dict] = mapped_column(JSONType, default=dict)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxEvent(Base):
    """Payout lifecycle events waiting to be published to Kafka."""

    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    aggregate_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JSONType)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
