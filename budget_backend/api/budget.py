"""Budget month handlers. ``month`` is a ``YYYY-MM`` key or a month row id."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.database import get_db
from budget_backend.core.deps import get_current_user, get_event_sink
from budget_backend.core.events import EventSink
from budget_backend.schemas import BudgetCategoryOut, BudgetCategoryUpdate, BudgetMonthOut
from budget_backend.services import BudgetService


def get_budget_month(
    month: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> BudgetMonthOut:
    return BudgetService(db, events).get_month(month, user_id=current_user.id)


def update_budget_category(
    month: str,
    category_id: int,
    payload: BudgetCategoryUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> BudgetCategoryOut:
    return BudgetService(db, events).update_category(month, category_id, payload, user_id=current_user.id)
