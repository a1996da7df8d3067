"""init ledger tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


UTC_NOW = sa.text("timezone('utc', now())")

ENUMS = {
    "expense_kind": ("EXPENSE", "TRANSFER"),
    "expense_status": ("PENDING", "CONFIRMED"),
    "split_method": ("EQUAL", "AMOUNT", "PERCENTAGE"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Created explicitly below; table DDL must not try to create them again.
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("tg_chat_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
        sa.UniqueConstraint("tg_chat_id", name="uq_groups_tg_chat_id"),
    )
    op.create_index("ix_groups_tg_chat_id", "groups", ["tg_chat_id"])

    op.create_table(
        "members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tg_user_id", sa.BigInteger(), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("placeholder_name", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
        sa.UniqueConstraint("group_id", "tg_user_id", name="uq_members_group_tg_user"),
        sa.UniqueConstraint("group_id", "placeholder_name", name="uq_members_group_placeholder"),
        sa.CheckConstraint(
            "(tg_user_id IS NULL) <> (placeholder_name IS NULL)",
            name="ck_members_user_xor_placeholder",
        ),
    )
    op.create_index("ix_members_group_id", "members", ["group_id"])
    op.create_index("ix_members_group_tg_user", "members", ["group_id", "tg_user_id"])

    for name in ENUMS:
        _enum(name).create(op.get_bind(), checkfirst=True)

    op.create_table(
        "expenses",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", _enum("expense_kind"), nullable=False),
        sa.Column("status", _enum("expense_status"), nullable=False),
        sa.Column("split_method", _enum("split_method"), nullable=False),
        sa.Column("total_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "created_by_member_id",
            sa.BigInteger(),
            sa.ForeignKey("members.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_minor > 0", name="ck_expenses_total_positive"),
    )
    op.create_index("ix_expenses_group_status", "expenses", ["group_id", "status"])
    op.create_index("ix_expenses_group_created_at", "expenses", ["group_id", "created_at"])

    for table, uq in (("expense_payers", "uq_expense_payer"), ("expense_splits", "uq_expense_split")):
        op.create_table(
            table,
            sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
            sa.Column(
                "expense_id",
                sa.BigInteger(),
                sa.ForeignKey("expenses.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "member_id",
                sa.BigInteger(),
                sa.ForeignKey("members.id", ondelete="RESTRICT"),
                nullable=False,
            ),
            sa.Column("amount_minor", sa.BigInteger(), nullable=False),
            sa.UniqueConstraint("expense_id", "member_id", name=uq),
        )
        op.create_index(f"ix_{table}_expense_id", table, ["expense_id"])

    op.create_table(
        "settlements",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_member_id", sa.BigInteger(), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("to_member_id", sa.BigInteger(), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("settled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "transfer_expense_id",
            sa.BigInteger(),
            sa.ForeignKey("expenses.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
        sa.CheckConstraint("amount_minor > 0", name="ck_settlements_amount_positive"),
    )
    op.create_index("ix_settlements_group_settled", "settlements", ["group_id", "settled"])


def downgrade() -> None:
    op.drop_index("ix_settlements_group_settled", table_name="settlements")
    op.drop_table("settlements")

    for table in ("expense_splits", "expense_payers"):
        op.drop_index(f"ix_{table}_expense_id", table_name=table)
        op.drop_table(table)

    op.drop_index("ix_expenses_group_created_at", table_name="expenses")
    op.drop_index("ix_expenses_group_status", table_name="expenses")
    op.drop_table("expenses")

    for name in ENUMS:
        _enum(name).drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_members_group_tg_user", table_name="members")
    op.drop_index("ix_members_group_id", table_name="members")
    op.drop_table("members")

    op.drop_index("ix_groups_tg_chat_id", table_name="groups")
    op.drop_table("groups")
