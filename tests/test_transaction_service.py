from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from budget_backend import models, schemas
from budget_backend.core.errors import ConflictError, NotFoundError, ValidationFailedError


def _month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _initial(db_session, account_id) -> models.Transaction:
    return db_session.scalar(
        select(models.Transaction).where(
            models.Transaction.account_id == account_id,
            models.Transaction.transaction_type == models.TransactionType.INITIAL,
        )
    )


def _budget_entry(budget_service, user, month_key, category_id):
    month = budget_service.get_month(month_key, user_id=user.id)
    for group in month.groups:
        for item in group.items:
            if item.category_id == category_id:
                return item
    raise AssertionError("entry missing")


def test_expense_updates_balance_and_budget(
    db_session, account_service, transaction_service, budget_service, account, user, groceries
):
    today = date.today()
    out = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=today, label="Market", amount="-40", category_id=groceries.id),
        user_id=user.id,
    )
    assert out.balance == Decimal("60")
    assert out.debit == Decimal("40")
    assert out.credit is None
    assert out.category_name == "Groceries"

    assert account_service.get_account(account.id, user_id=user.id).current_balance == Decimal("60")
    entry = _budget_entry(budget_service, user, _month_key(today), groceries.id)
    assert entry.activity == Decimal("-40")
    assert entry.available == entry.assigned - Decimal("40")


def test_delete_recomputes_balance_and_budget(
    account_service, transaction_service, budget_service, account, user, groceries
):
    when = date(2025, 1, 9)
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=when, label="Market", amount="-40", category_id=groceries.id),
        user_id=user.id,
    )
    deleted = transaction_service.delete_transaction(account.id, txn.id, user_id=user.id)
    assert deleted.id == txn.id

    stored = account_service.get_account(account.id, user_id=user.id)
    assert stored.current_balance == Decimal("100")
    entry = _budget_entry(budget_service, user, "2025-01", groceries.id)
    assert entry.activity == Decimal("0")
    assert entry.available == Decimal("0")

    with pytest.raises(NotFoundError):
        transaction_service.get_transaction(account.id, txn.id, user_id=user.id)


def test_initial_transaction_cannot_be_deleted(db_session, transaction_service, account, user):
    initial = _initial(db_session, account.id)
    with pytest.raises(ValidationFailedError):
        transaction_service.delete_transaction(account.id, initial.id, user_id=user.id)
    assert _initial(db_session, account.id) is not None


@pytest.mark.parametrize(
    "patch",
    [
        {"label": "Renamed"},
        {"transaction_type": models.TransactionType.NONE},
        {"category_id": None},
    ],
)
def test_initial_transaction_fields_are_immutable(db_session, transaction_service, account, user, patch):
    initial = _initial(db_session, account.id)
    with pytest.raises(ValidationFailedError):
        transaction_service.update_transaction(
            account.id, initial.id, schemas.TransactionUpdate(**patch), user_id=user.id
        )


def test_initial_transaction_link_is_immutable(db_session, transaction_service, account, user):
    other = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date.today(), label="Other", amount="5"),
        user_id=user.id,
    )
    initial = _initial(db_session, account.id)
    with pytest.raises(ValidationFailedError):
        transaction_service.update_transaction(
            account.id,
            initial.id,
            schemas.TransactionUpdate(linked_transaction_id=other.id),
            user_id=user.id,
        )


def test_initial_amount_update_moves_baseline_by_delta(
    db_session, account_service, transaction_service, account, user
):
    transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date.today(), label="Lunch", amount="-20"),
        user_id=user.id,
    )
    before = account_service.get_account(account.id, user_id=user.id).current_balance
    initial = _initial(db_session, account.id)

    out = transaction_service.update_transaction(
        account.id, initial.id, schemas.TransactionUpdate(amount="250"), user_id=user.id
    )
    assert out.amount == Decimal("250")

    stored = account_service.get_account(account.id, user_id=user.id)
    assert stored.initial_balance == Decimal("250")
    assert stored.current_balance - before == Decimal("150")


def test_initial_date_and_status_are_mutable(db_session, transaction_service, account, user):
    initial = _initial(db_session, account.id)
    out = transaction_service.update_transaction(
        account.id,
        initial.id,
        schemas.TransactionUpdate(date=date(2024, 12, 31), status=models.TransactionStatus.POINTED),
        user_id=user.id,
    )
    assert out.date == date(2024, 12, 31)
    assert out.status == models.TransactionStatus.POINTED


def test_general_create_rejects_initial_type(transaction_service, account, user):
    with pytest.raises(ValidationFailedError):
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(
                date=date.today(), label="Sneaky", amount="1", transaction_type=models.TransactionType.INITIAL
            ),
            user_id=user.id,
        )


def test_cannot_retype_to_initial(transaction_service, account, user):
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date.today(), label="Lunch", amount="-9"),
        user_id=user.id,
    )
    with pytest.raises(ValidationFailedError):
        transaction_service.update_transaction(
            account.id,
            txn.id,
            schemas.TransactionUpdate(transaction_type=models.TransactionType.INITIAL),
            user_id=user.id,
        )


def test_second_initial_transaction_conflicts(db_session, transaction_service, account, user):
    initial = _initial(db_session, account.id)
    with pytest.raises(ConflictError):
        transaction_service.create_initial_transaction(
            account.id,
            schemas.InitialTransactionCreate(amount="10", category_id=initial.category_id),
            user_id=user.id,
        )


def test_initial_transaction_requires_initial_category(db_session, transaction_service, user, groceries):
    bare = models.Account(user_id=user.id, name="Bare", currency="EUR")
    db_session.add(bare)
    db_session.commit()
    with pytest.raises(ValidationFailedError):
        transaction_service.create_initial_transaction(
            bare.id,
            schemas.InitialTransactionCreate(amount="10", category_id=groceries.id),
            user_id=user.id,
        )


def test_create_initial_transaction_defaults(db_session, category_service, transaction_service, user):
    system = category_service.ensure_system_categories(user_id=user.id)
    bare = models.Account(user_id=user.id, name="Bare", currency="EUR")
    db_session.add(bare)
    db_session.commit()

    out = transaction_service.create_initial_transaction(
        bare.id,
        schemas.InitialTransactionCreate(amount="42", category_id=system[models.CategoryKind.INITIAL].id),
        user_id=user.id,
    )
    assert out.label == "Initial balance"
    assert out.date == date.today()
    assert out.status == models.TransactionStatus.RECONCILED
    assert out.transaction_type == models.TransactionType.INITIAL
    assert db_session.get(models.Account, bare.id).initial_balance == Decimal("42")


def test_moving_across_months_recalculates_both(transaction_service, budget_service, account, user, groceries):
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date(2025, 1, 9), label="Market", amount="-40", category_id=groceries.id),
        user_id=user.id,
    )
    transaction_service.update_transaction(
        account.id, txn.id, schemas.TransactionUpdate(date=date(2025, 2, 3)), user_id=user.id
    )
    assert _budget_entry(budget_service, user, "2025-01", groceries.id).activity == Decimal("0")
    assert _budget_entry(budget_service, user, "2025-02", groceries.id).activity == Decimal("-40")


def test_cross_user_references_are_not_found(
    db_session, category_service, transaction_service, account, user, other_user
):
    foreign = category_service.create_category(schemas.CategoryCreate(name="Theirs"), user_id=other_user.id)
    with pytest.raises(NotFoundError):
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(date=date.today(), label="X", amount="-1", category_id=foreign.id),
            user_id=user.id,
        )
    with pytest.raises(NotFoundError):
        transaction_service.list_transactions(account.id, schemas.TransactionListQuery(), user_id=other_user.id)
    with pytest.raises(NotFoundError):
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(date=date.today(), label="X", amount="-1", linked_transaction_id=999999),
            user_id=user.id,
        )


def test_transfer_link_and_unlink_on_delete(db_session, transaction_service, account, user):
    first = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(
            date=date.today(), label="Out", amount="-10", transaction_type=models.TransactionType.TRANSFER
        ),
        user_id=user.id,
    )
    second = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(
            date=date.today(),
            label="In",
            amount="10",
            transaction_type=models.TransactionType.TRANSFER,
            linked_transaction_id=first.id,
        ),
        user_id=user.id,
    )
    assert second.linked_transaction_id == first.id

    transaction_service.delete_transaction(account.id, first.id, user_id=user.id)
    again = transaction_service.get_transaction(account.id, second.id, user_id=user.id)
    assert again.linked_transaction_id is None


def test_running_balance_in_listing(transaction_service, account, user):
    today = date.today()
    for label, amount in (("Gift", "50"), ("Cinema", "-30")):
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(date=today, label=label, amount=amount),
            user_id=user.id,
        )
    listing = transaction_service.list_transactions(account.id, schemas.TransactionListQuery(), user_id=user.id)
    assert [item.label for item in listing.items] == ["Cinema", "Gift", "Initial balance"]
    assert [item.balance for item in listing.items] == [Decimal("120"), Decimal("150"), Decimal("100")]
    assert listing.meta.total == 3
    assert listing.meta.take == 50


def test_listing_filters_and_take_cap(transaction_service, account, user):
    rows = [
        (date(2025, 1, 3), "Coffee beans", "-12", models.TransactionStatus.NONE),
        (date(2025, 1, 20), "Rent", "-700", models.TransactionStatus.RECONCILED),
        (date(2025, 2, 2), "coffee shop", "-4", models.TransactionStatus.POINTED),
    ]
    for when, label, amount, status in rows:
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(date=when, label=label, amount=amount, status=status),
            user_id=user.id,
        )

    def _list(**kwargs):
        return transaction_service.list_transactions(
            account.id, schemas.TransactionListQuery(**kwargs), user_id=user.id
        )

    assert [i.label for i in _list(search="COFFEE").items] == ["coffee shop", "Coffee beans"]
    assert [i.label for i in _list(date_from=date(2025, 1, 1), date_to=date(2025, 1, 31)).items] == [
        "Rent",
        "Coffee beans",
    ]
    assert [i.label for i in _list(status=models.TransactionStatus.POINTED).items] == ["coffee shop"]
    assert [i.label for i in _list(transaction_type=models.TransactionType.INITIAL).items] == ["Initial balance"]

    page = _list(skip=1, take=1, date_to=date(2025, 12, 31))
    assert page.meta.total == 3
    assert [i.label for i in page.items] == ["Rent"]

    assert _list(take=500).meta.take == 200


def test_events_follow_commit(events, transaction_service, account, user, groceries):
    events.clear()
    transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date(2025, 1, 9), label="Market", amount="-40", category_id=groceries.id),
        user_id=user.id,
    )
    names = events.names()
    assert "transaction.created" in names
    assert "account.updated" in names
    assert names.count("budget.month.updated") >= 1
    assert names.count("budget.category.updated") == 1

    events.clear()
    with pytest.raises(ValidationFailedError):
        transaction_service.delete_transaction(account.id, _initial_id(transaction_service, account, user), user_id=user.id)
    assert events.events == []


def test_delete_event_payload(events, transaction_service, account, user):
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date.today(), label="Lunch", amount="-9"),
        user_id=user.id,
    )
    events.clear()
    transaction_service.delete_transaction(account.id, txn.id, user_id=user.id)
    assert events.payloads("transaction.deleted") == [{"account_id": account.id, "transaction_id": txn.id}]


def _initial_id(transaction_service, account, user) -> int:
    listing = transaction_service.list_transactions(
        account.id,
        schemas.TransactionListQuery(transaction_type=models.TransactionType.INITIAL),
        user_id=user.id,
    )
    return listing.items[0].id


def _stored_month(db_session, user, start: date) -> models.BudgetMonth:
    db_session.expire_all()
    return db_session.scalar(
        select(models.BudgetMonth).where(models.BudgetMonth.user_id == user.id, models.BudgetMonth.month == start)
    )


def _stored_entry(db_session, user, start: date, category_id: int) -> models.BudgetCategory:
    db_session.expire_all()
    return db_session.scalar(
        select(models.BudgetCategory)
        .join(models.BudgetCategoryGroup)
        .join(models.BudgetMonth, models.BudgetCategoryGroup.month_id == models.BudgetMonth.id)
        .where(
            models.BudgetMonth.user_id == user.id,
            models.BudgetMonth.month == start,
            models.BudgetCategory.category_id == category_id,
        )
    )


def test_mutations_persist_budget_rows(db_session, transaction_service, account, user, groceries):
    january = date(2025, 1, 1)
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date(2025, 1, 9), label="Market", amount="-40", category_id=groceries.id),
        user_id=user.id,
    )
    entry = _stored_entry(db_session, user, january, groceries.id)
    assert entry.activity == Decimal("-40")
    assert entry.available == Decimal("-40")
    assert _stored_month(db_session, user, january).activity == Decimal("-40")

    transaction_service.update_transaction(
        account.id, txn.id, schemas.TransactionUpdate(amount="-25"), user_id=user.id
    )
    assert _stored_entry(db_session, user, january, groceries.id).activity == Decimal("-25")

    transaction_service.delete_transaction(account.id, txn.id, user_id=user.id)
    entry = _stored_entry(db_session, user, january, groceries.id)
    assert entry.activity == Decimal("0")
    assert entry.available == Decimal("0")
    assert _stored_month(db_session, user, january).activity == Decimal("0")


def test_income_plus_one_mutations_refresh_previous_month(
    db_session, events, transaction_service, budget_service, account, user
):
    january, february = date(2025, 1, 1), date(2025, 2, 1)
    budget_service.get_month("2025-01", user_id=user.id)
    budget_service.get_month("2025-02", user_id=user.id)
    advance = db_session.scalar(
        select(models.Category).where(
            models.Category.user_id == user.id,
            models.Category.kind == models.CategoryKind.INCOME_PLUS_ONE,
        )
    )

    events.clear()
    txn = transaction_service.create_transaction(
        account.id,
        schemas.TransactionCreate(date=date(2025, 2, 27), label="March salary", amount="1800", category_id=advance.id),
        user_id=user.id,
    )
    stored_january = _stored_month(db_session, user, january)
    assert stored_january.income == Decimal("1800")
    assert stored_january.available == Decimal("1800")
    stored_february = _stored_month(db_session, user, february)
    assert stored_february.income == Decimal("0")
    assert stored_february.available_carryover == Decimal("1800")
    assert {"month": "2025-01"} in events.payloads("budget.month.updated")

    transaction_service.update_transaction(
        account.id, txn.id, schemas.TransactionUpdate(amount="2000"), user_id=user.id
    )
    assert _stored_month(db_session, user, january).income == Decimal("2000")
    assert _stored_month(db_session, user, february).available_carryover == Decimal("2000")

    transaction_service.delete_transaction(account.id, txn.id, user_id=user.id)
    assert _stored_month(db_session, user, january).income == Decimal("0")
    assert _stored_month(db_session, user, february).available_carryover == Decimal("0")


def test_failed_budget_recompute_rolls_back_creation(
    db_session, monkeypatch, events, transaction_service, account, user, groceries
):
    def _broken(month, user_id):
        raise RuntimeError("recalculation failed")

    monkeypatch.setattr(transaction_service.recalculation, "recalculate", _broken)
    events.clear()
    with pytest.raises(RuntimeError):
        transaction_service.create_transaction(
            account.id,
            schemas.TransactionCreate(date=date(2025, 1, 9), label="Market", amount="-40", category_id=groceries.id),
            user_id=user.id,
        )

    db_session.expire_all()
    assert db_session.scalar(select(models.Transaction).where(models.Transaction.label == "Market")) is None
    stored = db_session.get(models.Account, account.id)
    assert stored.current_balance == Decimal("100")
    assert stored.pointed_balance == account.pointed_balance
    assert stored.reconciled_balance == account.reconciled_balance
    assert events.events == []
