"""Account handlers."""

from __future__ import annotations

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.database import get_db
from budget_backend.core.deps import get_current_user, get_event_sink
from budget_backend.core.events import EventSink
from budget_backend.schemas import AccountCreate, AccountOut, AccountUpdate
from budget_backend.services import AccountService


def list_accounts(
    include_archived: bool = Query(False, description="Include archived accounts"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> list[models.Account]:
    return AccountService(db, events).list_accounts(user_id=current_user.id, include_archived=include_archived)


def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> models.Account:
    return AccountService(db, events).get_account(account_id, user_id=current_user.id)


def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> AccountOut:
    return AccountService(db, events).create_account(payload, user_id=current_user.id)


def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> AccountOut:
    return AccountService(db, events).update_account(account_id, payload, user_id=current_user.id)


def archive_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> AccountOut:
    return AccountService(db, events).archive_account(account_id, user_id=current_user.id)
