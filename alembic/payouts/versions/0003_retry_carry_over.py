"""failure kind and retry lineage on payout records

Revision ID: 0003_retry_carry_over
Revises: 0002_hold_expiry
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_retry_carry_over"
down_revision = "0002_hold_expiry"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("payout_records", sa.Column("failure_kind", sa.String(), nullable=True))
    op.add_column("payout_records", sa.Column("retry_of_payout_id", sa.String(), nullable=True))
    op.create_foreign_key(
        "fk_payout_records_retry_of", "payout_records", "payout_records", ["retry_of_payout_id"], ["id"]
    )
    op.create_index("ix_payout_records_retry_of_payout_id", "payout_records", ["retry_of_payout_id"])
    # Carry-over lookup: failed attempts per vendor.
    op.create_index(
        "ix_payout_records_vendor_failed",
        "payout_records",
        ["vendor_account_id", "created_at"],
        postgresql_where=sa.text("status = 'failed'"),
    )


def downgrade() -> None:
    op.drop_index("ix_payout_records_vendor_failed", table_name="payout_records")
    op.drop_index("ix_payout_records_retry_of_payout_id", table_name="payout_records")
    op.drop_constraint("fk_payout_records_retry_of", "payout_records", type_="foreignkey")
    op.drop_column("payout_records", "retry_of_payout_id")
    op.drop_column("payout_records", "failure_kind")
