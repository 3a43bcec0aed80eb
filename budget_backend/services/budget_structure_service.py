from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.errors import NotFoundError
from budget_backend.core.logging import get_logger
from budget_backend.utils.months import month_start, next_month, parse_month_key

logger = get_logger(__name__)


@dataclass(frozen=True)
class StructureChanges:
    groups_created: int = 0
    entries_created: int = 0

    @property
    def has_new_categories(self) -> bool:
        return self.entries_created > 0


class BudgetStructureService:
    """Lazily materialise budget months, groups and entries for a user.

    A month has one group per top-level EXPENSE category and one entry per
    child category of that group. All writes are flushed, never committed;
    the caller's unit of work decides.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._top_level_cache: dict[int, int] = {}

    # ---- Months ----------------------------------------------------------
    def resolve_month(self, month_key: str, user_id: int) -> tuple[models.BudgetMonth, bool]:
        """Look a month up by row id or by ``YYYY-MM`` key, creating it when missing."""
        key = (month_key or "").strip()
        if key.isdigit():
            row = self.db.scalar(
                select(models.BudgetMonth).where(
                    models.BudgetMonth.id == int(key),
                    models.BudgetMonth.user_id == user_id,
                )
            )
            if row is not None:
                return row, False
            raise NotFoundError(f"Budget month {key} not found")
        return self.get_or_create_month(parse_month_key(key), user_id)

    def get_or_create_month(self, month: date, user_id: int) -> tuple[models.BudgetMonth, bool]:
        start = month_start(month)
        self.db.flush()
        row = self.db.scalar(
            select(models.BudgetMonth)
            .where(
                models.BudgetMonth.user_id == user_id,
                models.BudgetMonth.month >= start,
                models.BudgetMonth.month < next_month(start),
            )
            .order_by(models.BudgetMonth.month)
        )
        if row is None:
            row = models.BudgetMonth(
                user_id=user_id,
                month=start,
                income=models.ZERO,
                available_carryover=models.ZERO,
                assigned=models.ZERO,
                activity=models.ZERO,
                available=models.ZERO,
            )
            self.db.add(row)
            self.db.flush()
            logger.info("budget.month_created", user_id=user_id, month=start.isoformat())
            return row, True
        if row.month != start:
            logger.info(
                "budget.month_repaired",
                user_id=user_id,
                stored=row.month.isoformat(),
                month=start.isoformat(),
            )
            row.month = start
            self.db.flush()
        return row, False

    # ---- Groups / entries ------------------------------------------------
    def ensure_month_structure(self, month: models.BudgetMonth, user_id: int) -> StructureChanges:
        parents = list(
            self.db.scalars(
                select(models.Category)
                .where(
                    models.Category.user_id == user_id,
                    models.Category.parent_category_id.is_(None),
                    models.Category.kind == models.CategoryKind.EXPENSE,
                )
                .order_by(models.Category.sort_order, models.Category.name)
            )
        )
        if not parents:
            return StructureChanges()

        children = self.db.scalars(
            select(models.Category)
            .where(
                models.Category.user_id == user_id,
                models.Category.kind == models.CategoryKind.EXPENSE,
                models.Category.parent_category_id.in_([p.id for p in parents]),
            )
            .order_by(models.Category.sort_order, models.Category.name)
        )
        children_by_parent: dict[int, list[models.Category]] = {}
        for child in children:
            children_by_parent.setdefault(child.parent_category_id, []).append(child)

        groups = {
            g.category_id: g
            for g in self.db.scalars(
                select(models.BudgetCategoryGroup).where(models.BudgetCategoryGroup.month_id == month.id)
            )
        }
        existing_entries = set(
            self.db.execute(
                select(models.BudgetCategory.group_id, models.BudgetCategory.category_id)
                .join(models.BudgetCategoryGroup)
                .where(models.BudgetCategoryGroup.month_id == month.id)
            ).tuples()
        )

        groups_created = 0
        entries_created = 0
        for parent in parents:
            group = groups.get(parent.id)
            if group is None:
                group = models.BudgetCategoryGroup(month_id=month.id, category_id=parent.id)
                self.db.add(group)
                self.db.flush()
                groups[parent.id] = group
                groups_created += 1

            for child in children_by_parent.get(parent.id, []):
                if (group.id, child.id) in existing_entries:
                    continue
                self.db.add(self._new_entry(group.id, child.id))
                existing_entries.add((group.id, child.id))
                entries_created += 1

        if groups_created or entries_created:
            self.db.flush()
            logger.info(
                "budget.structure_created",
                user_id=user_id,
                month=month.month.isoformat(),
                groups=groups_created,
                entries=entries_created,
            )
        return StructureChanges(groups_created=groups_created, entries_created=entries_created)

    def ensure_entry_for_category(self, month: models.BudgetMonth, category_id: int) -> models.BudgetCategory:
        """Guarantee an entry for ``category_id`` under its top-level group in ``month``."""
        top_level_id = self.resolve_top_level_category_id(category_id)

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

        entry = self.db.scalar(
            select(models.BudgetCategory).where(
                models.BudgetCategory.group_id == group.id,
                models.BudgetCategory.category_id == category_id,
            )
        )
        if entry is None:
            entry = self._new_entry(group.id, category_id)
            self.db.add(entry)
            self.db.flush()
        return entry

    def resolve_top_level_category_id(self, category_id: int) -> int:
        if category_id in self._top_level_cache:
            return self._top_level_cache[category_id]

        current_id = category_id
        seen: set[int] = set()
        while current_id not in seen:
            seen.add(current_id)
            parent_id = self.db.scalar(
                select(models.Category.parent_category_id).where(models.Category.id == current_id)
            )
            if parent_id is None:
                break
            current_id = parent_id

        self._top_level_cache[category_id] = current_id
        return current_id

    @staticmethod
    def _new_entry(group_id: int, category_id: int) -> models.BudgetCategory:
        return models.BudgetCategory(
            group_id=group_id,
            category_id=category_id,
            assigned=models.ZERO,
            activity=models.ZERO,
            available=models.ZERO,
        )
