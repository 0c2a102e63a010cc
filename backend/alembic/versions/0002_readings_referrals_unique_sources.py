"""readings, referrals and unique ledger sources

Revision ID: 0002_readings_referrals_unique_sources
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_readings_referrals_unique_sources"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    existing = {c["name"] for c in inspector.get_columns("credit_accounts")}
    with op.batch_alter_table("credit_accounts") as batch_op:
        if "total_readings" not in existing:
            batch_op.add_column(sa.Column("total_readings", sa.Integer(), nullable=False, server_default="0"))
        if "referred_by" not in existing:
            batch_op.add_column(sa.Column("referred_by", sa.String(), nullable=True))

    idxs = {idx["name"] for idx in inspector.get_indexes("credit_ledger")}
    if "uq_credit_ledger_user_source" not in idxs:
        op.create_index("uq_credit_ledger_user_source", "credit_ledger", ["user_id", "source"], unique=True)

    if "readings" not in existing_tables:
        op.create_table(
            "readings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("spread_type", sa.String(), nullable=False),
            sa.Column("credits_spent", sa.Integer(), nullable=False),
            sa.Column("ledger_entry_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
        op.create_index("ix_readings_id", "readings", ["id"])
        op.create_index("ix_readings_user_id", "readings", ["user_id"])
        op.create_index("ix_readings_spread_type", "readings", ["spread_type"])


def downgrade() -> None:
    op.drop_table("readings")
    op.drop_index("uq_credit_ledger_user_source", table_name="credit_ledger")
    with op.batch_alter_table("credit_accounts") as batch_op:
        batch_op.drop_column("referred_by")
        batch_op.drop_column("total_readings")
