from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.logging import get_logger
from budget_backend.utils.money import to_money
from budget_backend.utils.months import (
    format_month_key,
    month_start,
    months_between_inclusive,
    next_month,
    previous_month,
)

from .budget_structure_service import BudgetStructureService

logger = get_logger(__name__)


@dataclass
class RecalculationResult:
    month: models.BudgetMonth
    changed_months: list[str] = field(default_factory=list)
    changed_entries: list[tuple[str, models.BudgetCategory]] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryAmounts:
    required_amount: Decimal
    optimized_amount: Decimal


class BudgetRecalculationService:
    """Recompute month, group and entry figures from the transaction history.

    Per month ``M`` of a user:

    - ``income``    = Σ INCOME amounts dated in ``M`` + Σ INCOME_PLUS_ONE amounts dated in ``M+1``
    - ``carryover`` = ``available`` of the row for ``M-1`` (0 when that row does not exist)
    - entry ``activity``  = Σ NONE-type amounts in ``M`` for the entry's EXPENSE category
    - entry ``available`` = ``assigned + activity``
    - month ``assigned`` / ``activity`` = sums over the month's entries
    - month ``available`` = ``carryover + income - assigned``

    Recalculating a month also recalculates every later month of the user so
    chained carryovers stay in step.
    """

    def __init__(self, db: Session, structure: BudgetStructureService | None = None) -> None:
        self.db = db
        self.structure = structure or BudgetStructureService(db)

    def recalculate(self, month: date, user_id: int) -> RecalculationResult:
        start = month_start(month)
        target, _ = self.structure.get_or_create_month(start, user_id)
        self.structure.ensure_month_structure(target, user_id)

        later = list(
            self.db.scalars(
                select(models.BudgetMonth)
                .where(models.BudgetMonth.user_id == user_id, models.BudgetMonth.month > target.month)
                .order_by(models.BudgetMonth.month)
            )
        )

        result = RecalculationResult(month=target)
        for row in [target, *later]:
            self._recalculate_month(row, user_id, result)
        if format_month_key(target.month) not in result.changed_months:
            result.changed_months.insert(0, format_month_key(target.month))

        logger.info(
            "budget.recalculated",
            user_id=user_id,
            month=format_month_key(target.month),
            months=len(later) + 1,
            changed_entries=len(result.changed_entries),
        )
        return result

    # ---- Per-month pass --------------------------------------------------
    def _recalculate_month(self, row: models.BudgetMonth, user_id: int, result: RecalculationResult) -> None:
        start = row.month
        end = next_month(start)
        key = format_month_key(start)

        for category_id in self._expense_categories_with_activity(user_id, start, end):
            self.structure.ensure_entry_for_category(row, category_id)
        self.db.flush()

        income = self._sum_by_kind(user_id, models.CategoryKind.INCOME, start, end) + self._sum_by_kind(
            user_id, models.CategoryKind.INCOME_PLUS_ONE, end, next_month(end)
        )
        carryover = self._carryover(user_id, start)
        activity_by_category = self._activity_by_category(user_id, start, end)

        entries = list(
            self.db.scalars(
                select(models.BudgetCategory)
                .join(models.BudgetCategoryGroup)
                .where(models.BudgetCategoryGroup.month_id == row.id)
                .order_by(models.BudgetCategory.id)
            )
        )

        assigned_total = Decimal("0")
        activity_total = Decimal("0")
        for entry in entries:
            assigned = to_money(entry.assigned)
            activity = activity_by_category.get(entry.category_id, to_money(0))
            available = assigned + activity
            if to_money(entry.activity) != activity or to_money(entry.available) != available:
                entry.activity = activity
                entry.available = available
                result.changed_entries.append((key, entry))
            assigned_total += assigned
            activity_total += activity

        values = {
            "income": to_money(income),
            "available_carryover": to_money(carryover),
            "assigned": to_money(assigned_total),
            "activity": to_money(activity_total),
            "available": to_money(carryover + income - assigned_total),
        }
        if any(to_money(getattr(row, name)) != value for name, value in values.items()):
            for name, value in values.items():
                setattr(row, name, value)
            result.changed_months.append(key)
        self.db.flush()

    def _carryover(self, user_id: int, start: date) -> Decimal:
        # Single hop: a missing previous month resets the chain to zero.
        previous = self.db.scalar(
            select(models.BudgetMonth.available).where(
                models.BudgetMonth.user_id == user_id,
                models.BudgetMonth.month == previous_month(start),
            )
        )
        return to_money(previous)

    def _sum_by_kind(self, user_id: int, kind: models.CategoryKind, start: date, end: date) -> Decimal:
        total = self.db.scalar(
            select(func.coalesce(func.sum(models.Transaction.amount), 0))
            .join(models.Account, models.Transaction.account_id == models.Account.id)
            .join(models.Category, models.Transaction.category_id == models.Category.id)
            .where(
                models.Account.user_id == user_id,
                models.Category.kind == kind,
                models.Transaction.date >= start,
                models.Transaction.date < end,
            )
        )
        return to_money(total)

    def _expense_filter(self, user_id: int, start: date, end: date | None):
        clauses = [
            models.Account.user_id == user_id,
            models.Category.kind == models.CategoryKind.EXPENSE,
            models.Transaction.transaction_type == models.TransactionType.NONE,
            models.Transaction.date >= start,
        ]
        if end is not None:
            clauses.append(models.Transaction.date < end)
        return clauses

    def _expense_categories_with_activity(self, user_id: int, start: date, end: date) -> list[int]:
        return list(
            self.db.scalars(
                select(models.Transaction.category_id)
                .join(models.Account, models.Transaction.account_id == models.Account.id)
                .join(models.Category, models.Transaction.category_id == models.Category.id)
                .where(*self._expense_filter(user_id, start, end))
                .distinct()
                .order_by(models.Transaction.category_id)
            )
        )

    def _activity_by_category(self, user_id: int, start: date, end: date) -> dict[int, Decimal]:
        rows = self.db.execute(
            select(models.Transaction.category_id, func.sum(models.Transaction.amount))
            .join(models.Account, models.Transaction.account_id == models.Account.id)
            .join(models.Category, models.Transaction.category_id == models.Category.id)
            .where(*self._expense_filter(user_id, start, end))
            .group_by(models.Transaction.category_id)
        )
        return {category_id: to_money(total) for category_id, total in rows}

    # ---- Presentation metrics -------------------------------------------
    def compute_category_amounts(
        self,
        month: models.BudgetMonth,
        entries: list[models.BudgetCategory],
        user_id: int,
    ) -> dict[int, CategoryAmounts]:
        """Derive ``required_amount`` and ``optimized_amount`` per category id.

        ``required`` is the money spent this month. ``optimized`` adds, for each
        already-scheduled future expense, the part not covered by the
        envelope's positive balance spread evenly over the months left until it
        is due.
        """
        category_ids = sorted({entry.category_id for entry in entries})
        if not category_ids:
            return {}

        start = month.month
        end = next_month(start)
        spending = (
            select(models.Transaction.category_id, models.Transaction.amount, models.Transaction.date)
            .join(models.Account, models.Transaction.account_id == models.Account.id)
            .join(models.Category, models.Transaction.category_id == models.Category.id)
            .where(
                models.Transaction.category_id.in_(category_ids),
                models.Transaction.amount < 0,
            )
        )

        required_by_category: dict[int, Decimal] = {}
        for category_id, amount, _ in self.db.execute(spending.where(*self._expense_filter(user_id, start, end))):
            required_by_category[category_id] = required_by_category.get(category_id, Decimal("0")) + abs(
                to_money(amount)
            )

        futures_by_category: dict[int, list[tuple[Decimal, date]]] = {}
        future_rows = self.db.execute(
            spending.where(*self._expense_filter(user_id, end, None)).order_by(
                models.Transaction.date, models.Transaction.id
            )
        )
        for category_id, amount, when in future_rows:
            futures_by_category.setdefault(category_id, []).append((abs(to_money(amount)), when))

        amounts: dict[int, CategoryAmounts] = {}
        for entry in entries:
            required = to_money(required_by_category.get(entry.category_id))
            futures = futures_by_category.get(entry.category_id, [])
            if not futures:
                amounts[entry.category_id] = CategoryAmounts(required, required)
                continue

            remaining_balance = max(Decimal("0"), to_money(entry.available))
            smoothing = Decimal("0")
            for amount, when in futures:
                take = min(remaining_balance, amount)
                remaining_balance -= take
                uncovered = max(Decimal("0"), amount - take)
                months_useful = months_between_inclusive(start, month_start(when))
                if months_useful > 0:
                    smoothing += uncovered / months_useful
            amounts[entry.category_id] = CategoryAmounts(required, to_money(required + smoothing))
        return amounts
