"""initial ledger schema

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("join_code", sa.String(length=12), nullable=False, unique=True),
        sa.Column("created_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("paid_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount_cents > 0", name="expenses_amount_positive"),
    )

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("expense_id", sa.BigInteger(), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("share_cents", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("share_cents >= 0", name="expense_splits_share_non_negative"),
        sa.UniqueConstraint("expense_id", "user_id", name="expense_splits_expense_user_key"),
    )

    op.create_table(
        "settlements",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE")),
        sa.Column("from_user", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("to_user", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="completed"),
        sa.Column("note", sa.Text()),
        # NULLs never collide, so only provider-backed rows are deduplicated
        sa.Column("external_ref", sa.Text(), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount_cents > 0", name="settlements_amount_positive"),
        sa.CheckConstraint("from_user <> to_user", name="settlements_distinct_parties"),
        sa.CheckConstraint(
            "status in ('pending','completed','succeeded','failed')",
            name="settlements_status_check",
        ),
    )

    op.create_index("idx_group_members_user", "group_members", ["user_id"])
    op.create_index("idx_expenses_group_created_at", "expenses", ["group_id", sa.text("created_at DESC")])
    op.create_index("idx_splits_expense", "expense_splits", ["expense_id"])
    op.create_index("idx_splits_user", "expense_splits", ["user_id"])
    op.create_index("idx_settlements_group_created_at", "settlements", ["group_id", sa.text("created_at DESC")])


def downgrade() -> None:
    op.drop_index("idx_settlements_group_created_at", table_name="settlements")
    op.drop_index("idx_splits_user", table_name="expense_splits")
    op.drop_index("idx_splits_expense", table_name="expense_splits")
    op.drop_index("idx_expenses_group_created_at", table_name="expenses")
    op.drop_index("idx_group_members_user", table_name="group_members")

    op.drop_table("settlements")
    op.drop_table("expense_splits")
    op.drop_table("expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
