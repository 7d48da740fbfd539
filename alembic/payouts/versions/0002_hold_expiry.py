"""hold types, expiry and one active hold per vendor

Revision ID: 0002_hold_expiry
Revises: 0001_payouts
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_hold_expiry"
down_revision = "0001_payouts"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "payout_holds",
        sa.Column("hold_type", sa.String(), nullable=False, server_default="manual"),
    )
    op.alter_column("payout_holds", "hold_type", server_default=None)
    op.add_column("payout_holds", sa.Column("release_date", sa.DateTime(timezone=True), nullable=True))
    op.add_column("payout_holds", sa.Column("lifted_by", sa.String(), nullable=True))
    op.create_index(
        "ux_payout_holds_one_active",
        "payout_holds",
        ["vendor_account_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "ix_payout_holds_active_release",
        "payout_holds",
        ["status", "release_date"],
        postgresql_where=sa.text("release_date IS NOT NULL"),
    )

    # NULL fee_percent falls back to DEFAULT_FEE_PERCENT.
    op.alter_column("vendor_accounts", "fee_percent", nullable=True, server_default=None)


def downgrade() -> None:
    op.execute("UPDATE vendor_accounts SET fee_percent = 5.00 WHERE fee_percent IS NULL")
    op.alter_column("vendor_accounts", "fee_percent", nullable=False, server_default="5.00")
    op.drop_index("ix_payout_holds_active_release", table_name="payout_holds")
    op.drop_index("ux_payout_holds_one_active", table_name="payout_holds")
    op.drop_column("payout_holds", "lifted_by")
    op.drop_column("payout_holds", "release_date")
    op.drop_column("payout_holds", "hold_type")
