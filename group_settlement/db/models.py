from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


UTC_NOW = sa.func.now()

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(sa.Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class Group(Base):
    __tablename__ = "groups"
    __table_args__ = (
        UniqueConstraint("tg_chat_id", name="uq_groups_tg_chat_id"),
        Index("ix_groups_tg_chat_id", "tg_chat_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    # Telegram chat id (group id) is a signed 64-bit integer.
    tg_chat_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)

    members: Mapped[list[Member]] = relationship(back_populates="group", cascade="all, delete-orphan")
    expenses: Mapped[list[Expense]] = relationship(back_populates="group", cascade="all, delete-orphan")


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("group_id", "tg_user_id", name="uq_members_group_tg_user"),
        UniqueConstraint("group_id", "placeholder_name", name="uq_members_group_placeholder"),
        CheckConstraint(
            "(tg_user_id IS NULL) <> (placeholder_name IS NULL)",
            name="ck_members_user_xor_placeholder",
        ),
        Index("ix_members_group_tg_user", "group_id", "tg_user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Registered members have a Telegram user; placeholders only have a name.
    tg_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    placeholder_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)

    group: Mapped[Group] = relationship(back_populates="members")

    @property
    def is_placeholder(self) -> bool:
        return self.tg_user_id is None


class ExpenseKind(str, enum.Enum):
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class ExpenseStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class SplitMethod(str, enum.Enum):
    EQUAL = "EQUAL"
    AMOUNT = "AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("total_minor > 0", name="ck_expenses_total_positive"),
        Index("ix_expenses_group_status", "group_id", "status"),
        Index("ix_expenses_group_created_at", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[ExpenseKind] = mapped_column(Enum(ExpenseKind, name="expense_kind"), nullable=False)
    status: Mapped[ExpenseStatus] = mapped_column(Enum(ExpenseStatus, name="expense_status"), nullable=False)
    split_method: Mapped[SplitMethod] = mapped_column(Enum(SplitMethod, name="split_method"), nullable=False)
    # Amount in minor units of `currency`. Example: 1250 USD -> $12.50.
    total_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_member_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    group: Mapped[Group] = relationship(back_populates="expenses")
    payers: Mapped[list[ExpensePayer]] = relationship(back_populates="expense", cascade="all, delete-orphan")
    splits: Mapped[list[ExpenseSplit]] = relationship(back_populates="expense", cascade="all, delete-orphan")


class ExpensePayer(Base):
    __tablename__ = "expense_payers"
    __table_args__ = (
        UniqueConstraint("expense_id", "member_id", name="uq_expense_payer"),
        Index("ix_expense_payers_expense_id", "expense_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    expense_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
    )
    member_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    expense: Mapped[Expense] = relationship(back_populates="payers")
    member: Mapped[Member] = relationship()


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"
    __table_args__ = (
        UniqueConstraint("expense_id", "member_id", name="uq_expense_split"),
        Index("ix_expense_splits_expense_id", "expense_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    expense_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
    )
    member_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    expense: Mapped[Expense] = relationship(back_populates="splits")
    member: Mapped[Member] = relationship()


class Settlement(Base):
    __tablename__ = "settlements"
    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_settlements_amount_positive"),
        Index("ix_settlements_group_settled", "group_id", "settled"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_member_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    to_member_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # 1-based number shown by /settle; unique among the group's open rows.
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    settled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa.false())
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Confirmed TRANSFER expense that carries the payment into the ledger.
    transfer_expense_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("expenses.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)
