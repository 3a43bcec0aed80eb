from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from budget_backend import models, schemas
from budget_backend.core.config import settings
from budget_backend.core.errors import ConflictError, NotFoundError, ValidationFailedError
from budget_backend.core.events import EventSink
from budget_backend.core.logging import get_logger
from budget_backend.utils.money import to_money
from budget_backend.utils.months import month_start, previous_month

from .balance_service import BalanceService
from .budget_recalculation_service import BudgetRecalculationService
from .budget_service import emit_recalculation_events
from .budget_structure_service import BudgetStructureService
from .unit_of_work import UnitOfWork

logger = get_logger(__name__)

INITIAL_LABEL = "Initial balance"

# Fields of an INITIAL transaction that can never change after creation
_INITIAL_IMMUTABLE_FIELDS = ("label", "category_id", "transaction_type", "linked_transaction_id")


def account_out(account: models.Account) -> schemas.AccountOut:
    return schemas.AccountOut.model_validate(account)


def transaction_out(txn: models.Transaction, balance: Decimal) -> schemas.TransactionOut:
    amount = to_money(txn.amount)
    return schemas.TransactionOut(
        id=txn.id,
        account_id=txn.account_id,
        category_id=txn.category_id,
        category_name=txn.category.name if txn.category is not None else None,
        date=txn.date,
        label=txn.label,
        amount=amount,
        debit=abs(amount) if amount < 0 else None,
        credit=amount if amount > 0 else None,
        balance=to_money(balance),
        status=txn.status,
        transaction_type=txn.transaction_type,
        linked_transaction_id=txn.linked_transaction_id,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


class TransactionService:
    """Transaction lifecycle: type rules, then balance and budget recalculation.

    Every mutation runs in one unit of work covering the row write, the
    account balance recompute and the budget recompute of each touched month.
    Events are published only after that unit commits.
    """

    def __init__(self, db: Session, events: EventSink) -> None:
        self.db = db
        self.events = events
        self.balances = BalanceService(db)
        self.structure = BudgetStructureService(db)
        self.recalculation = BudgetRecalculationService(db, self.structure)

    # ---- Queries ---------------------------------------------------------
    def list_transactions(
        self,
        account_id: int,
        query: schemas.TransactionListQuery,
        *,
        user_id: int,
    ) -> schemas.TransactionListOut:
        account = self._get_account(account_id, user_id)

        skip = query.skip
        take = min(query.take or settings.TRANSACTIONS_DEFAULT_TAKE, settings.TRANSACTIONS_MAX_TAKE)

        filters = [models.Transaction.account_id == account.id]
        if query.date_from is not None:
            filters.append(models.Transaction.date >= query.date_from)
        if query.date_to is not None:
            filters.append(models.Transaction.date <= query.date_to)
        if query.search:
            filters.append(func.lower(models.Transaction.label).contains(query.search.lower(), autoescape=True))
        if query.status is not None:
            filters.append(models.Transaction.status == query.status)
        if query.transaction_type is not None:
            filters.append(models.Transaction.transaction_type == query.transaction_type)

        total = self.db.scalar(select(func.count(models.Transaction.id)).where(*filters)) or 0
        rows = self.db.scalars(
            select(models.Transaction)
            .where(*filters)
            .order_by(
                models.Transaction.date.desc(),
                models.Transaction.created_at.desc(),
                models.Transaction.id.desc(),
            )
            .offset(skip)
            .limit(take)
        )
        running = self.balances.running_balances(account.id)
        items = [transaction_out(txn, running.get(txn.id, Decimal("0"))) for txn in rows]
        return schemas.TransactionListOut(
            items=items,
            meta=schemas.TransactionListMeta(total=total, skip=skip, take=take),
        )

    def get_transaction(self, account_id: int, transaction_id: int, *, user_id: int) -> schemas.TransactionOut:
        account = self._get_account(account_id, user_id)
        txn = self._get_transaction(account, transaction_id)
        running = self.balances.running_balances(account.id)
        return transaction_out(txn, running.get(txn.id, Decimal("0")))

    # ---- Mutations -------------------------------------------------------
    def create_transaction(
        self,
        account_id: int,
        payload: schemas.TransactionCreate,
        *,
        user_id: int,
    ) -> schemas.TransactionOut:
        if payload.transaction_type is models.TransactionType.INITIAL:
            raise ValidationFailedError("Initial transactions are managed automatically")

        with UnitOfWork(self.db, self.events) as uow:
            account = self._get_account(account_id, user_id, lock=True)
            if payload.category_id is not None:
                self._ensure_category_ownership(payload.category_id, user_id)
            if payload.linked_transaction_id is not None:
                self._ensure_transaction_ownership(payload.linked_transaction_id, user_id)

            txn = models.Transaction(
                account_id=account.id,
                category_id=payload.category_id,
                date=payload.date,
                label=payload.label,
                amount=to_money(payload.amount),
                status=payload.status,
                transaction_type=payload.transaction_type,
                linked_transaction_id=payload.linked_transaction_id,
            )
            self.db.add(txn)
            self.db.flush()

            months = self._touched_months([(txn.date, txn.category_id)], user_id)
            out = self._after_mutation(uow, account, txn, "transaction.created", months, user_id)
        logger.info("transaction.created", user_id=user_id, account_id=account_id, transaction_id=out.id)
        return out

    def create_initial_transaction(
        self,
        account_id: int,
        payload: schemas.InitialTransactionCreate,
        *,
        user_id: int,
    ) -> schemas.TransactionOut:
        with UnitOfWork(self.db, self.events) as uow:
            account = self._get_account(account_id, user_id, lock=True)
            category = self._ensure_category_ownership(payload.category_id, user_id)
            if category.kind is not models.CategoryKind.INITIAL:
                raise ValidationFailedError("The initial transaction requires a category of kind INITIAL")

            existing = self.db.scalar(
                select(models.Transaction.id).where(
                    models.Transaction.account_id == account.id,
                    models.Transaction.transaction_type == models.TransactionType.INITIAL,
                )
            )
            if existing is not None:
                raise ConflictError(f"Account {account_id} already has an initial transaction")

            amount = to_money(payload.amount)
            txn = models.Transaction(
                account_id=account.id,
                category_id=category.id,
                date=payload.date or date.today(),
                label=payload.label or INITIAL_LABEL,
                amount=amount,
                status=payload.status or models.TransactionStatus.RECONCILED,
                transaction_type=models.TransactionType.INITIAL,
            )
            self.db.add(txn)
            account.initial_balance = amount
            self.db.flush()

            months = self._touched_months([(txn.date, txn.category_id)], user_id)
            out = self._after_mutation(uow, account, txn, "transaction.created", months, user_id)
        logger.info("transaction.initial_created", user_id=user_id, account_id=account_id, transaction_id=out.id)
        return out

    def update_transaction(
        self,
        account_id: int,
        transaction_id: int,
        patch: schemas.TransactionUpdate,
        *,
        user_id: int,
    ) -> schemas.TransactionOut:
        data = patch.model_dump(exclude_unset=True)

        with UnitOfWork(self.db, self.events) as uow:
            account = self._get_account(account_id, user_id, lock=True)
            txn = self._get_transaction(account, transaction_id)
            self._check_update_rules(txn, data)

            if data.get("category_id") is not None:
                self._ensure_category_ownership(data["category_id"], user_id)
            if data.get("linked_transaction_id") is not None:
                if data["linked_transaction_id"] == txn.id:
                    raise ValidationFailedError("A transaction cannot be linked to itself")
                self._ensure_transaction_ownership(data["linked_transaction_id"], user_id)

            old_date, old_category_id = txn.date, txn.category_id
            for name in ("label", "date", "amount", "status", "transaction_type"):
                if data.get(name) is not None:
                    setattr(txn, name, to_money(data[name]) if name == "amount" else data[name])
            for name in ("category_id", "linked_transaction_id"):
                if name in data:
                    setattr(txn, name, data[name])

            if txn.is_initial and data.get("amount") is not None:
                account.initial_balance = to_money(data["amount"])
            self.db.flush()

            months = self._touched_months([(old_date, old_category_id), (txn.date, txn.category_id)], user_id)
            out = self._after_mutation(uow, account, txn, "transaction.updated", months, user_id)
        logger.info(
            "transaction.updated",
            user_id=user_id,
            account_id=account_id,
            transaction_id=transaction_id,
            fields=sorted(data),
        )
        return out

    def delete_transaction(self, account_id: int, transaction_id: int, *, user_id: int) -> schemas.TransactionOut:
        with UnitOfWork(self.db, self.events) as uow:
            account = self._get_account(account_id, user_id, lock=True)
            txn = self._get_transaction(account, transaction_id)
            if txn.is_initial:
                raise ValidationFailedError("Initial transactions cannot be deleted")

            balance_before = self.balances.running_balances(account.id).get(txn.id, Decimal("0"))
            snapshot = transaction_out(txn, balance_before)
            months = self._touched_months([(txn.date, txn.category_id)], user_id)

            self.db.execute(
                update(models.Transaction)
                .where(models.Transaction.linked_transaction_id == txn.id)
                .values(linked_transaction_id=None)
            )
            self.db.delete(txn)
            self.db.flush()

            updated_account = self.balances.recalculate_account_balances(account.id)
            uow.emit("transaction.deleted", {"account_id": account.id, "transaction_id": transaction_id})
            uow.emit("account.updated", account_out(updated_account).model_dump(mode="json"))
            self._recalculate_months(uow, months, user_id)
        logger.info("transaction.deleted", user_id=user_id, account_id=account_id, transaction_id=transaction_id)
        return snapshot

    # ---- Internals -------------------------------------------------------
    def _after_mutation(
        self,
        uow: UnitOfWork,
        account: models.Account,
        txn: models.Transaction,
        event_name: str,
        months: Iterable[date],
        user_id: int,
    ) -> schemas.TransactionOut:
        updated_account = self.balances.recalculate_account_balances(account.id)
        running = self.balances.running_balances(account.id)
        out = transaction_out(txn, running.get(txn.id, Decimal("0")))
        uow.emit(event_name, out.model_dump(mode="json"))
        uow.emit("account.updated", account_out(updated_account).model_dump(mode="json"))
        self._recalculate_months(uow, months, user_id)
        return out

    def _touched_months(self, touched: Iterable[tuple[date, int | None]], user_id: int) -> list[date]:
        """Months whose budget figures depend on transactions at ``(date, category_id)``.

        INCOME_PLUS_ONE money is income of the month before its date, so that
        month is included as well when a budget row for it already exists.
        """
        months: set[date] = set()
        for when, category_id in touched:
            start = month_start(when)
            months.add(start)
            if category_id is None:
                continue
            kind = self.db.scalar(select(models.Category.kind).where(models.Category.id == category_id))
            if kind is not models.CategoryKind.INCOME_PLUS_ONE:
                continue
            previous = previous_month(start)
            exists = self.db.scalar(
                select(models.BudgetMonth.id).where(
                    models.BudgetMonth.user_id == user_id,
                    models.BudgetMonth.month == previous,
                )
            )
            if exists is not None:
                months.add(previous)
        return sorted(months)

    def _recalculate_months(self, uow: UnitOfWork, months: Iterable[date], user_id: int) -> None:
        # Each pass walks forward, so the earliest month refreshes the later carryovers too.
        for start in sorted({month_start(m) for m in months}):
            result = self.recalculation.recalculate(start, user_id)
            emit_recalculation_events(uow, result)

    def _check_update_rules(self, txn: models.Transaction, data: dict) -> None:
        if txn.is_initial:
            for name in _INITIAL_IMMUTABLE_FIELDS:
                if name in data and data[name] != getattr(txn, name):
                    raise ValidationFailedError(f"'{name}' of an initial transaction cannot be changed")
            return
        if data.get("transaction_type") is models.TransactionType.INITIAL:
            raise ValidationFailedError("A transaction cannot be turned into an initial transaction")

    def _get_account(self, account_id: int, user_id: int, *, lock: bool = False) -> models.Account:
        stmt = select(models.Account).where(models.Account.id == account_id, models.Account.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        account = self.db.scalar(stmt)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def _get_transaction(self, account: models.Account, transaction_id: int) -> models.Transaction:
        txn = self.db.get(models.Transaction, transaction_id)
        if txn is None or txn.account_id != account.id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn

    def _ensure_category_ownership(self, category_id: int, user_id: int) -> models.Category:
        category = self.db.scalar(
            select(models.Category).where(models.Category.id == category_id, models.Category.user_id == user_id)
        )
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def _ensure_transaction_ownership(self, transaction_id: int, user_id: int) -> models.Transaction:
        txn = self.db.scalar(
            select(models.Transaction)
            .join(models.Account, models.Transaction.account_id == models.Account.id)
            .where(models.Transaction.id == transaction_id, models.Account.user_id == user_id)
        )
        if txn is None:
            raise NotFoundError(f"Linked transaction {transaction_id} not found")
        return txn
