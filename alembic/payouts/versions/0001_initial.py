"""initial payouts schema

Revision ID: 0001_payouts
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_payouts"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = False) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "vendor_accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_account_ref", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fee_percent", sa.Numeric(5, 2), nullable=False, server_default="5.00"),
        sa.Column("schedule_interval", sa.String(), nullable=False, server_default="weekly"),
        sa.Column("minimum_payout_amount", sa.Integer(), nullable=True),
        sa.Column("hold_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vendor_accounts_external_account_ref", "vendor_accounts", ["external_account_ref"], unique=True)
    op.create_index("ix_vendor_accounts_status", "vendor_accounts", ["status"])

    op.create_table(
        "payout_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vendor_account_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("fee_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("external_transfer_ref", sa.String(), nullable=True),
        sa.Column("external_payout_ref", sa.String(), nullable=True),
        sa.Column("arrival_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        *_timestamps(updated=True),
        sa.ForeignKeyConstraint(["vendor_account_id"], ["vendor_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payout_records_vendor_account_id", "payout_records", ["vendor_account_id"])
    op.create_index("ix_payout_records_status", "payout_records", ["status"])
    op.create_index("ix_payout_records_idempotency_key", "payout_records", ["idempotency_key"])
    op.create_index("ix_payout_records_external_transfer_ref", "payout_records", ["external_transfer_ref"])
    op.create_index("ix_payout_records_external_payout_ref", "payout_records", ["external_payout_ref"])
    op.create_index(
        "ix_payout_records_vendor_created_at", "payout_records", ["vendor_account_id", "created_at"]
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vendor_account_id", sa.String(), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("fee_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payout_status", sa.String(), nullable=False),
        sa.Column("payout_id", sa.String(), nullable=True),
        sa.Column("paid_out_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("net_amount = gross_amount - fee_amount", name="ck_ledger_net"),
        sa.ForeignKeyConstraint(["vendor_account_id"], ["vendor_accounts.id"]),
        sa.ForeignKeyConstraint(["payout_id"], ["payout_records.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ledger_entries_vendor_account_id", "ledger_entries", ["vendor_account_id"])
    op.create_index("ix_ledger_entries_status", "ledger_entries", ["status"])
    op.create_index("ix_ledger_entries_payout_status", "ledger_entries", ["payout_status"])
    op.create_index("ix_ledger_entries_payout_id", "ledger_entries", ["payout_id"])
    # Eligible-entry scan: vendor, unpaid, oldest first.
    op.create_index(
        "ix_ledger_entries_eligible",
        "ledger_entries",
        ["vendor_account_id", "status", "payout_status", "created_at"],
    )

    op.create_table(
        "payout_line_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("payout_id", sa.String(), nullable=False),
        sa.Column("ledger_entry_id", sa.String(), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("fee_amount", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["payout_id"], ["payout_records.id"]),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["ledger_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payout_id", "ledger_entry_id", name="uq_line_item_entry"),
    )
    op.create_index("ix_payout_line_items_payout_id", "payout_line_items", ["payout_id"])
    op.create_index("ix_payout_line_items_ledger_entry_id", "payout_line_items", ["ledger_entry_id"])

    op.create_table(
        "payout_timeline",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("payout_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["payout_id"], ["payout_records.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payout_timeline_payout_id", "payout_timeline", ["payout_id"])

    op.create_table(
        "payout_holds",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vendor_account_id", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("placed_by", sa.String(), nullable=True),
        sa.Column("placed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("lifted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lift_reason", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["vendor_account_id"], ["vendor_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payout_holds_vendor_account_id", "payout_holds", ["vendor_account_id"])
    op.create_index("ix_payout_holds_status", "payout_holds", ["status"])

    op.create_table(
        "payout_failures",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vendor_account_id", sa.String(), nullable=False),
        sa.Column("payout_id", sa.String(), nullable=True),
        sa.Column("error_kind", sa.String(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=False),
        sa.Column("error_details", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_manual_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payout_failures_vendor_account_id", "payout_failures", ["vendor_account_id"])
    op.create_index("ix_payout_failures_payout_id", "payout_failures", ["payout_id"])
    op.create_index("ix_payout_failures_error_kind", "payout_failures", ["error_kind"])
    op.create_index("ix_payout_failures_requires_manual_review", "payout_failures", ["requires_manual_review"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])
    op.create_index("ix_outbox_events_status_created_at", "outbox_events", ["status", "created_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("payout_failures")
    op.drop_table("payout_holds")
    op.drop_table("payout_timeline")
    op.drop_table("payout_line_items")
    op.drop_table("ledger_entries")
    op.drop_table("payout_records")
    op.drop_table("vendor_accounts")
