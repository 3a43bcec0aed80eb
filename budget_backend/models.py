from __future__ import annotations

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Boolean,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.database import Base


MONEY = Numeric(18, 4)
ZERO = Decimal("0")


def now_utc_naive() -> datetime:
    """Return a naive UTC timestamp with microsecond precision."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, onupdate=now_utc_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    profile: Mapped["UserProfile"] = relationship(back_populates="user", uselist=False)


class UserProfile(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100))
    base_currency: Mapped[str | None] = mapped_column(String(3))

    user: Mapped[User] = relationship(back_populates="profile")


class AccountType(str, Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    CASH = "CASH"
    INVESTMENT = "INVESTMENT"
    LOAN = "LOAN"
    OTHER = "OTHER"


class Account(Base, TimestampMixin):
    """A user-owned money container.

    The three derived balances are written only by the balance calculator;
    ``initial_balance`` mirrors the amount of the account's INITIAL transaction.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType, name="account_type"), nullable=False, default=AccountType.CHECKING
    )
    institution: Mapped[str | None] = mapped_column(String(120))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    initial_balance: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    pointed_balance: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    reconciled_balance: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CategoryKind(str, Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"
    INCOME_PLUS_ONE = "INCOME_PLUS_ONE"
    INITIAL = "INITIAL"
    TRANSFER = "TRANSFER"

    @property
    def is_system(self) -> bool:
        return self is not CategoryKind.EXPENSE


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    kind: Mapped[CategoryKind] = mapped_column(
        SAEnum(CategoryKind, name="category_kind"), nullable=False, default=CategoryKind.EXPENSE
    )
    parent_category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="CASCADE"))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    linked_account_id: Mapped[int | None] = mapped_column(ForeignKey("account.id", ondelete="SET NULL"))

    parent: Mapped["Category | None"] = relationship(
        "Category",
        remote_side="Category.id",
        back_populates="children",
    )
    children: Mapped[list["Category"]] = relationship("Category", back_populates="parent")

    __table_args__ = (
        CheckConstraint(
            "parent_category_id IS NULL OR parent_category_id != id",
            name="ck_category_parent_not_self",
        ),
    )


class TransactionStatus(str, Enum):
    NONE = "NONE"
    POINTED = "POINTED"
    RECONCILED = "RECONCILED"


class TransactionType(str, Enum):
    NONE = "NONE"
    INITIAL = "INITIAL"
    TRANSFER = "TRANSFER"


POINTED_STATUSES = (TransactionStatus.POINTED, TransactionStatus.RECONCILED)


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    label: Mapped[str] = mapped_column(String(180), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.NONE,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, name="transaction_type"),
        nullable=False,
        default=TransactionType.NONE,
    )
    linked_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transaction.id", ondelete="SET NULL"),
        nullable=True,
    )

    account: Mapped[Account] = relationship("Account", back_populates="transactions")
    category: Mapped[Category | None] = relationship("Category")

    __table_args__ = (
        Index("ix_transaction_account_date", "account_id", "date"),
        Index(
            "uq_transaction_initial_per_account",
            "account_id",
            unique=True,
            sqlite_where=text("transaction_type = 'INITIAL'"),
            postgresql_where=text("transaction_type = 'INITIAL'"),
        ),
    )

    @property
    def is_initial(self) -> bool:
        return self.transaction_type is TransactionType.INITIAL


class BudgetMonth(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    month: Mapped[date] = mapped_column(Date, nullable=False)
    income: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    available_carryover: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    assigned: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    activity: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    available: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)

    groups: Mapped[list["BudgetCategoryGroup"]] = relationship(
        back_populates="month",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_budget_month_user_month"),
    )


class BudgetCategoryGroup(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_id: Mapped[int] = mapped_column(ForeignKey("budgetmonth.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id", ondelete="CASCADE"), nullable=False)

    month: Mapped[BudgetMonth] = relationship(back_populates="groups")
    category: Mapped[Category] = relationship("Category")
    entries: Mapped[list["BudgetCategory"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("month_id", "category_id", name="uq_budget_group_month_category"),
    )


class BudgetCategory(Base, TimestampMixin):
    """Per-month envelope for one leaf category; ``available = assigned + activity``."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("budgetcategorygroup.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    assigned: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    activity: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)
    available: Mapped[Decimal] = mapped_column(MONEY, default=ZERO, nullable=False)

    group: Mapped[BudgetCategoryGroup] = relationship(back_populates="entries")
    category: Mapped[Category] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("group_id", "category_id", name="uq_budget_category_group_category"),
    )
