from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from budget_backend import models, schemas
from budget_backend.core.errors import NotFoundError
from budget_backend.core.events import EventSink
from budget_backend.core.logging import get_logger
from budget_backend.utils.money import to_money
from budget_backend.utils.months import format_month_key

from .budget_recalculation_service import BudgetRecalculationService, CategoryAmounts, RecalculationResult
from .budget_structure_service import BudgetStructureService
from .unit_of_work import UnitOfWork

logger = get_logger(__name__)


def budget_category_out(
    entry: models.BudgetCategory,
    amounts: CategoryAmounts | None = None,
) -> schemas.BudgetCategoryOut:
    return schemas.BudgetCategoryOut(
        id=entry.id,
        group_id=entry.group_id,
        category_id=entry.category_id,
        category_name=entry.category.name if entry.category is not None else None,
        assigned=to_money(entry.assigned),
        activity=to_money(entry.activity),
        available=to_money(entry.available),
        required_amount=amounts.required_amount if amounts else to_money(0),
        optimized_amount=amounts.optimized_amount if amounts else to_money(0),
    )


def emit_recalculation_events(uow: UnitOfWork, result: RecalculationResult) -> None:
    """Queue one event per distinct (month, entry) and per distinct month."""
    seen_entries: dict[tuple[str, int], models.BudgetCategory] = {}
    for month_key, entry in result.changed_entries:
        seen_entries[(month_key, entry.id)] = entry
    for (month_key, _), entry in seen_entries.items():
        uow.emit(
            "budget.category.updated",
            {"month": month_key, "category": budget_category_out(entry).model_dump(mode="json")},
        )
    for month_key in dict.fromkeys(result.changed_months):
        uow.emit("budget.month.updated", {"month": month_key})


class BudgetService:
    def __init__(self, db: Session, events: EventSink) -> None:
        self.db = db
        self.events = events
        self.structure = BudgetStructureService(db)
        self.recalculation = BudgetRecalculationService(db, self.structure)

    def get_month(self, month_key: str, *, user_id: int) -> schemas.BudgetMonthOut:
        with UnitOfWork(self.db, self.events) as uow:
            month, _ = self.structure.resolve_month(month_key, user_id)
            changes = self.structure.ensure_month_structure(month, user_id)
            if changes.has_new_categories:
                logger.info("budget.new_categories", user_id=user_id, month=format_month_key(month.month))
            result = self.recalculation.recalculate(month.month, user_id)
            emit_recalculation_events(uow, result)
            out = self._build_month(result.month, user_id)
        return out

    def update_category(
        self,
        month_key: str,
        category_id: int,
        patch: schemas.BudgetCategoryUpdate,
        *,
        user_id: int,
    ) -> schemas.BudgetCategoryOut:
        data = patch.model_dump(exclude_unset=True, exclude_none=True)
        with UnitOfWork(self.db, self.events) as uow:
            month, _ = self.structure.resolve_month(month_key, user_id)
            self.structure.ensure_month_structure(month, user_id)

            entry = self.db.scalar(
                select(models.BudgetCategory)
                .join(models.BudgetCategoryGroup)
                .where(
                    models.BudgetCategoryGroup.month_id == month.id,
                    models.BudgetCategory.category_id == category_id,
                )
            )
            if entry is None:
                raise NotFoundError(f"Budget category for month {month_key} and category {category_id} not found")
            if not data:
                return budget_category_out(entry)

            assigned = to_money(data.get("assigned", entry.assigned))
            activity = to_money(data.get("activity", entry.activity))
            entry.assigned = assigned
            entry.activity = activity
            entry.available = to_money(data["available"]) if "available" in data else assigned + activity
            self.db.flush()
            logger.info(
                "budget.category_updated",
                user_id=user_id,
                month=format_month_key(month.month),
                category_id=category_id,
                fields=sorted(data),
            )

            result = self.recalculation.recalculate(month.month, user_id)
            result.changed_entries.insert(0, (format_month_key(month.month), entry))
            emit_recalculation_events(uow, result)
            out = budget_category_out(entry)
        return out

    def _build_month(self, month: models.BudgetMonth, user_id: int) -> schemas.BudgetMonthOut:
        groups = list(
            self.db.scalars(
                select(models.BudgetCategoryGroup)
                .join(models.Category, models.BudgetCategoryGroup.category_id == models.Category.id)
                .where(models.BudgetCategoryGroup.month_id == month.id)
                .options(
                    selectinload(models.BudgetCategoryGroup.category),
                    selectinload(models.BudgetCategoryGroup.entries).selectinload(models.BudgetCategory.category),
                )
                .order_by(models.Category.sort_order, models.Category.name)
                .execution_options(populate_existing=True)
            )
        )
        entries = [entry for group in groups for entry in group.entries]
        amounts = self.recalculation.compute_category_amounts(month, entries, user_id)

        group_outs: list[schemas.BudgetGroupOut] = []
        for group in groups:
            ordered = sorted(group.entries, key=lambda e: (e.category.sort_order, e.category.name))
            items = [budget_category_out(entry, amounts.get(entry.category_id)) for entry in ordered]
            group_outs.append(
                schemas.BudgetGroupOut(
                    id=group.id,
                    month_id=group.month_id,
                    category_id=group.category_id,
                    category_name=group.category.name,
                    assigned=sum((i.assigned for i in items), Decimal("0")),
                    activity=sum((i.activity for i in items), Decimal("0")),
                    available=sum((i.available for i in items), Decimal("0")),
                    items=items,
                )
            )

        carryover = to_money(month.available_carryover)
        return schemas.BudgetMonthOut(
            id=month.id,
            month=format_month_key(month.month),
            available_carryover=carryover,
            income=to_money(month.income),
            assigned=to_money(month.assigned),
            activity=to_money(month.activity),
            available=to_money(month.available),
            total_assigned=sum((g.assigned for g in group_outs), Decimal("0")),
            total_activity=sum((g.activity for g in group_outs), Decimal("0")),
            total_available=carryover + sum((g.available for g in group_outs), Decimal("0")),
            groups=group_outs,
            created_at=month.created_at,
            updated_at=month.updated_at,
        )
