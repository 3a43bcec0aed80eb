"""Transaction handlers, scoped to one account."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.database import get_db
from budget_backend.core.deps import get_current_user, get_event_sink
from budget_backend.core.events import EventSink
from budget_backend.schemas import (
    InitialTransactionCreate,
    TransactionCreate,
    TransactionListOut,
    TransactionListQuery,
    TransactionOut,
    TransactionUpdate,
)
from budget_backend.services import TransactionService


def list_transactions(
    account_id: int,
    date_from: Optional[dt.date] = Query(None),
    date_to: Optional[dt.date] = Query(None),
    search: Optional[str] = Query(None, max_length=120),
    status: Optional[models.TransactionStatus] = Query(None),
    transaction_type: Optional[models.TransactionType] = Query(None, alias="type"),
    skip: int = Query(0, ge=0),
    take: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionListOut:
    query = TransactionListQuery(
        date_from=date_from,
        date_to=date_to,
        search=search,
        status=status,
        transaction_type=transaction_type,
        skip=skip,
        take=take,
    )
    return TransactionService(db, events).list_transactions(account_id, query, user_id=current_user.id)


def get_transaction(
    account_id: int,
    txn_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionOut:
    return TransactionService(db, events).get_transaction(account_id, txn_id, user_id=current_user.id)


def create_transaction(
    account_id: int,
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionOut:
    return TransactionService(db, events).create_transaction(account_id, payload, user_id=current_user.id)


def create_initial_transaction(
    account_id: int,
    payload: InitialTransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionOut:
    return TransactionService(db, events).create_initial_transaction(account_id, payload, user_id=current_user.id)


def update_transaction(
    account_id: int,
    txn_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionOut:
    return TransactionService(db, events).update_transaction(account_id, txn_id, payload, user_id=current_user.id)


def delete_transaction(
    account_id: int,
    txn_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    events: EventSink = Depends(get_event_sink),
) -> TransactionOut:
    return TransactionService(db, events).delete_transaction(account_id, txn_id, user_id=current_user.id)
