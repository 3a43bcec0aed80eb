from __future__ import annotations

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.config import settings
from budget_backend.core.database import get_db
from budget_backend.core.events import EventSink, publisher


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Returns the first user (creates a demo one if none exists). Tests may
    override this dependency to act as a different user.
    """
    user = db.scalar(select(models.User).order_by(models.User.id))
    if not user:
        user = models.User(email="demo@example.com", is_active=True)
        db.add(user)
        db.flush()
        db.add(models.UserProfile(user_id=user.id, display_name="Demo", base_currency=settings.DEFAULT_CURRENCY))
        db.commit()
        db.refresh(user)
    return user


def get_event_sink() -> EventSink:
    return publisher
