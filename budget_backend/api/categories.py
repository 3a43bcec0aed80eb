"""Category handlers. System kinds are protected by the service."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Query, Response
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.database import get_db
from budget_backend.core.deps import get_current_user, get_event_sink
from budget_backend.core.events import EventSink
from budget_backend.schemas import CategoryCreate, CategoryOut, CategoryUpdate
from budget_backend.services import CategoryService


def list_categories(
    kind: Optional[models.CategoryKind] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> list[models.Category]:
    return CategoryService(db, events).list_categories(user_id=current_user.id, kind=kind)


def get_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> models.Category:
    return CategoryService(db, events).get_category(category_id, user_id=current_user.id)


def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> CategoryOut:
    return CategoryService(db, events).create_category(payload, user_id=current_user.id)


def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> CategoryOut:
    return CategoryService(db, events).update_category(category_id, payload, user_id=current_user.id)


def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> Response:
    CategoryService(db, events).delete_category(category_id, user_id=current_user.id)
    return Response(status_code=204)
