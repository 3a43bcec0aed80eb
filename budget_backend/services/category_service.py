from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from budget_backend import models, schemas
from budget_backend.core.errors import NotFoundError, ValidationFailedError
from budget_backend.core.events import EventSink
from budget_backend.core.logging import get_logger
from budget_backend.utils.months import month_start

from .budget_recalculation_service import BudgetRecalculationService
from .budget_service import emit_recalculation_events
from .unit_of_work import UnitOfWork

logger = get_logger(__name__)

SYSTEM_CATEGORY_NAMES = {
    models.CategoryKind.INITIAL: "Initial balance",
    models.CategoryKind.INCOME: "Income",
    models.CategoryKind.INCOME_PLUS_ONE: "Income next month",
}


def category_out(category: models.Category) -> schemas.CategoryOut:
    return schemas.CategoryOut.model_validate(category)


class CategoryService:
    def __init__(self, db: Session, events: EventSink) -> None:
        self.db = db
        self.events = events

    # ---- Queries ---------------------------------------------------------
    def list_categories(
        self,
        *,
        user_id: int,
        kind: Optional[models.CategoryKind] = None,
    ) -> list[models.Category]:
        q = self.db.query(models.Category).filter(models.Category.user_id == user_id)
        if kind is not None:
            q = q.filter(models.Category.kind == kind)
        return q.order_by(models.Category.sort_order, models.Category.name, models.Category.id).all()

    def get_category(self, category_id: int, *, user_id: int) -> models.Category:
        category = (
            self.db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .first()
        )
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def ensure_system_categories(self, *, user_id: int) -> dict[models.CategoryKind, models.Category]:
        """Get or create the per-user INITIAL, INCOME and INCOME_PLUS_ONE categories.

        Idempotent by kind. Only flushes; the caller's unit of work commits.
        """
        existing = {
            row.kind: row
            for row in self.db.scalars(
                select(models.Category)
                .where(
                    models.Category.user_id == user_id,
                    models.Category.kind.in_(list(SYSTEM_CATEGORY_NAMES)),
                )
                .order_by(models.Category.id.desc())
            )
        }
        for kind, name in SYSTEM_CATEGORY_NAMES.items():
            if kind in existing:
                continue
            row = models.Category(user_id=user_id, name=name, kind=kind, sort_order=0)
            self.db.add(row)
            existing[kind] = row
            logger.info("category.system_created", user_id=user_id, kind=kind.value)
        self.db.flush()
        return existing

    # ---- Mutations -------------------------------------------------------
    def create_category(self, payload: schemas.CategoryCreate, *, user_id: int) -> schemas.CategoryOut:
        if payload.kind is not models.CategoryKind.EXPENSE:
            raise ValidationFailedError("Only EXPENSE categories can be created")

        with UnitOfWork(self.db, self.events) as uow:
            if payload.parent_category_id is not None:
                self._check_parent(payload.parent_category_id, user_id)

            sort_order = payload.sort_order
            if sort_order is None:
                sort_order = self._next_sort_order(user_id, payload.parent_category_id)

            row = models.Category(
                user_id=user_id,
                name=payload.name.strip(),
                kind=models.CategoryKind.EXPENSE,
                parent_category_id=payload.parent_category_id,
                sort_order=sort_order,
            )
            self.db.add(row)
            self.db.flush()
            out = category_out(row)
            uow.emit("category.created", out.model_dump(mode="json"))
        logger.info("category.created", user_id=user_id, category_id=out.id, parent_id=out.parent_category_id)
        return out

    def update_category(
        self,
        category_id: int,
        patch: schemas.CategoryUpdate,
        *,
        user_id: int,
    ) -> schemas.CategoryOut:
        data = patch.model_dump(exclude_unset=True)

        with UnitOfWork(self.db, self.events) as uow:
            row = self.get_category(category_id, user_id=user_id)
            if row.kind.is_system:
                raise ValidationFailedError("System categories cannot be modified")
            if data.get("kind") is not None and data["kind"].is_system:
                raise ValidationFailedError("A category cannot be turned into a system category")

            if "parent_category_id" in data and data["parent_category_id"] != row.parent_category_id:
                parent_id = data["parent_category_id"]
                if parent_id is not None:
                    if parent_id == row.id:
                        raise ValidationFailedError("A category cannot be its own parent")
                    self._check_parent(parent_id, user_id)
                    if self._has_children(row.id):
                        raise ValidationFailedError("A category with children cannot be nested")
                row.parent_category_id = parent_id
                self.db.flush()
                self._move_budget_entries(row)

            if data.get("name") is not None:
                row.name = data["name"].strip()
            if data.get("sort_order") is not None:
                row.sort_order = data["sort_order"]
            self.db.flush()

            out = category_out(row)
            uow.emit("category.updated", out.model_dump(mode="json"))
        logger.info("category.updated", user_id=user_id, category_id=category_id, fields=sorted(data))
        return out

    def delete_category(self, category_id: int, *, user_id: int) -> None:
        with UnitOfWork(self.db, self.events) as uow:
            row = self.get_category(category_id, user_id=user_id)
            if row.kind.is_system:
                raise ValidationFailedError("System categories cannot be deleted")
            if self._has_children(row.id):
                raise ValidationFailedError("Delete or move the child categories first")

            affected = self._affected_months(row.id, user_id)

            group_ids = select(models.BudgetCategoryGroup.id).where(
                models.BudgetCategoryGroup.category_id == row.id
            )
            self.db.execute(
                delete(models.BudgetCategory).where(
                    (models.BudgetCategory.category_id == row.id)
                    | models.BudgetCategory.group_id.in_(group_ids)
                )
            )
            self.db.execute(delete(models.BudgetCategoryGroup).where(models.BudgetCategoryGroup.category_id == row.id))
            self.db.execute(
                update(models.Transaction)
                .where(models.Transaction.category_id == row.id)
                .values(category_id=None)
            )
            self.db.delete(row)
            self.db.flush()
            self.db.expire_all()
            uow.emit("category.deleted", {"id": category_id})

            if affected:
                # Recalculating the earliest month walks every later month too.
                result = BudgetRecalculationService(self.db).recalculate(affected[0], user_id)
                emit_recalculation_events(uow, result)
        logger.info("category.deleted", user_id=user_id, category_id=category_id, months=len(affected))

    # ---- Internals -------------------------------------------------------
    def _check_parent(self, parent_id: int, user_id: int) -> models.Category:
        parent = (
            self.db.query(models.Category)
            .filter(models.Category.id == parent_id, models.Category.user_id == user_id)
            .first()
        )
        if parent is None:
            raise NotFoundError(f"Parent category {parent_id} not found")
        if parent.kind is not models.CategoryKind.EXPENSE:
            raise ValidationFailedError("Parent category must be an EXPENSE category")
        if parent.parent_category_id is not None:
            raise ValidationFailedError("Categories can only be nested one level deep")
        return parent

    def _has_children(self, category_id: int) -> bool:
        child = self.db.query(models.Category.id).filter(models.Category.parent_category_id == category_id).first()
        return child is not None

    def _next_sort_order(self, user_id: int, parent_id: Optional[int]) -> int:
        q = self.db.query(func.max(models.Category.sort_order)).filter(models.Category.user_id == user_id)
        if parent_id is None:
            q = q.filter(models.Category.parent_category_id.is_(None))
        else:
            q = q.filter(models.Category.parent_category_id == parent_id)
        current = q.scalar()
        return 0 if current is None else current + 1

    def _move_budget_entries(self, category: models.Category) -> None:
        """Re-home existing envelopes of ``category`` under its new top-level group."""
        entries = list(
            self.db.scalars(
                select(models.BudgetCategory).where(models.BudgetCategory.category_id == category.id)
            )
        )
        top_level_id = category.parent_category_id or category.id
        for entry in entries:
            month = entry.group.month
            group = self.db.scalar(
                select(models.BudgetCategoryGroup).where(
                    models.BudgetCategoryGroup.month_id == month.id,
                    models.BudgetCategoryGroup.category_id == top_level_id,
                )
            )
            if group is None:
                group = models.BudgetCategoryGroup(month_id=month.id, category_id=top_level_id)
                self.db.add(group)
                self.db.flush()
            if entry.group_id != group.id:
                entry.group = group
        if category.parent_category_id is not None:
            # A category that became a child no longer owns a group.
            self.db.flush()
            self.db.execute(
                delete(models.BudgetCategoryGroup).where(models.BudgetCategoryGroup.category_id == category.id)
            )
        self.db.flush()
        if entries:
            logger.info("category.entries_moved", category_id=category.id, entries=len(entries))

    def _affected_months(self, category_id: int, user_id: int) -> list[date]:
        txn_dates = self.db.scalars(
            select(models.Transaction.date)
            .join(models.Account, models.Transaction.account_id == models.Account.id)
            .where(models.Account.user_id == user_id, models.Transaction.category_id == category_id)
        )
        budget_months = self.db.scalars(
            select(models.BudgetMonth.month)
            .join(models.BudgetCategoryGroup, models.BudgetCategoryGroup.month_id == models.BudgetMonth.id)
            .join(models.BudgetCategory, models.BudgetCategory.group_id == models.BudgetCategoryGroup.id)
            .where(models.BudgetMonth.user_id == user_id, models.BudgetCategory.category_id == category_id)
        )
        return sorted({month_start(d) for d in [*txn_dates, *budget_months]})
