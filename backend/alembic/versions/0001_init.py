"""init credit ledger

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "credit_accounts" not in existing_tables:
        op.create_table(
            "credit_accounts",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("login_streak", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_bonus_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        )
    idxs = existing_indexes("credit_accounts")
    if "ix_credit_accounts_user_id" not in idxs:
        op.create_index("ix_credit_accounts_user_id", "credit_accounts", ["user_id"])

    if "credit_ledger" not in existing_tables:
        op.create_table(
            "credit_ledger",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.CheckConstraint("amount <> 0", name="ck_credit_ledger_amount_non_zero"),
        )
    idxs = existing_indexes("credit_ledger")
    for name, cols in (
        ("ix_credit_ledger_id", ["id"]),
        ("ix_credit_ledger_user_id", ["user_id"]),
        ("ix_credit_ledger_kind", ["kind"]),
        ("ix_credit_ledger_source", ["source"]),
    ):
        if name not in idxs:
            op.create_index(name, "credit_ledger", cols)

    if "achievement_unlocks" not in existing_tables:
        op.create_table(
            "achievement_unlocks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("achievement_id", sa.String(), nullable=False),
            sa.Column("unlocked_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("user_id", "achievement_id", name="uq_achievement_unlocks_user_achievement"),
        )
    idxs = existing_indexes("achievement_unlocks")
    for name, cols in (
        ("ix_achievement_unlocks_id", ["id"]),
        ("ix_achievement_unlocks_user_id", ["user_id"]),
        ("ix_achievement_unlocks_achievement_id", ["achievement_id"]),
    ):
        if name not in idxs:
            op.create_index(name, "achievement_unlocks", cols)


def downgrade() -> None:
    op.drop_table("achievement_unlocks")
    op.drop_table("credit_ledger")
    op.drop_table("credit_accounts")
