from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import AccountType, CategoryKind, TransactionStatus, TransactionType


class ErrorOut(BaseModel):
    kind: str
    detail: str


# --- Accounts -----------------------------------------------------------------


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    type: AccountType = AccountType.CHECKING
    institution: Optional[str] = Field(default=None, max_length=120)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    initial_balance: Decimal = Decimal("0")
    archived: bool = False


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[AccountType] = None
    institution: Optional[str] = Field(default=None, max_length=120)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    initial_balance: Optional[Decimal] = None
    archived: Optional[bool] = None


class AccountOut(BaseModel):
    id: int
    name: str
    type: AccountType
    institution: Optional[str] = None
    currency: str
    archived: bool
    initial_balance: Decimal
    current_balance: Decimal
    pointed_balance: Decimal
    reconciled_balance: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Categories ---------------------------------------------------------------


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    kind: CategoryKind = CategoryKind.EXPENSE
    parent_category_id: Optional[int] = None
    sort_order: Optional[int] = Field(default=None, ge=0)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    kind: Optional[CategoryKind] = None
    parent_category_id: Optional[int] = None
    sort_order: Optional[int] = Field(default=None, ge=0)


class CategoryOut(BaseModel):
    id: int
    name: str
    kind: CategoryKind
    parent_category_id: Optional[int] = None
    sort_order: int
    linked_account_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Transactions -------------------------------------------------------------


class TransactionCreate(BaseModel):
    date: dt.date
    label: str = Field(min_length=1, max_length=180)
    amount: Decimal = Field(description="Signed amount; expenses are negative")
    category_id: Optional[int] = None
    status: TransactionStatus = TransactionStatus.NONE
    transaction_type: TransactionType = TransactionType.NONE
    linked_transaction_id: Optional[int] = None


class TransactionUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    date: Optional[dt.date] = None
    label: Optional[str] = Field(default=None, min_length=1, max_length=180)
    amount: Optional[Decimal] = None
    category_id: Optional[int] = None
    status: Optional[TransactionStatus] = None
    transaction_type: Optional[TransactionType] = None
    linked_transaction_id: Optional[int] = None


class InitialTransactionCreate(BaseModel):
    amount: Decimal = Decimal("0")
    category_id: int
    label: Optional[str] = Field(default=None, min_length=1, max_length=180)
    date: Optional[dt.date] = None
    status: Optional[TransactionStatus] = None


class TransactionListQuery(BaseModel):
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    search: Optional[str] = Field(default=None, max_length=120)
    status: Optional[TransactionStatus] = None
    transaction_type: Optional[TransactionType] = None
    skip: int = Field(default=0, ge=0)
    take: Optional[int] = Field(default=None, ge=1)

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class TransactionOut(BaseModel):
    id: int
    account_id: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    date: dt.date
    label: str
    amount: Decimal
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    balance: Decimal
    status: TransactionStatus
    transaction_type: TransactionType
    linked_transaction_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class TransactionListMeta(BaseModel):
    total: int
    skip: int
    take: int


class TransactionListOut(BaseModel):
    items: list[TransactionOut]
    meta: TransactionListMeta


# --- Budget -------------------------------------------------------------------


class BudgetCategoryOut(BaseModel):
    id: int
    group_id: int
    category_id: int
    category_name: Optional[str] = None
    assigned: Decimal
    activity: Decimal
    available: Decimal
    required_amount: Decimal = Decimal("0")
    optimized_amount: Decimal = Decimal("0")


class BudgetGroupOut(BaseModel):
    id: int
    month_id: int
    category_id: int
    category_name: Optional[str] = None
    assigned: Decimal
    activity: Decimal
    available: Decimal
    items: list[BudgetCategoryOut] = Field(default_factory=list)


class BudgetMonthOut(BaseModel):
    id: int
    month: str
    available_carryover: Decimal
    income: Decimal
    assigned: Decimal
    activity: Decimal
    available: Decimal
    total_assigned: Decimal
    total_activity: Decimal
    total_available: Decimal
    groups: list[BudgetGroupOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class BudgetCategoryUpdate(BaseModel):
    assigned: Optional[Decimal] = None
    activity: Optional[Decimal] = None
    available: Optional[Decimal] = None
