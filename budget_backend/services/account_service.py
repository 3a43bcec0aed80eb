from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from budget_backend import models, schemas
from budget_backend.core.config import settings
from budget_backend.core.errors import NotFoundError
from budget_backend.core.events import EventSink
from budget_backend.core.logging import get_logger
from budget_backend.utils.money import to_money

from .category_service import CategoryService, category_out
from .transaction_service import TransactionService, account_out
from .unit_of_work import UnitOfWork

logger = get_logger(__name__)


def transfer_category_name(account_name: str) -> str:
    return f"Transfer: {account_name}"


class AccountService:
    def __init__(self, db: Session, events: EventSink) -> None:
        self.db = db
        self.events = events
        self.categories = CategoryService(db, events)
        self.transactions = TransactionService(db, events)

    def list_accounts(self, *, user_id: int, include_archived: bool = False) -> list[models.Account]:
        q = self.db.query(models.Account).filter(models.Account.user_id == user_id)
        if not include_archived:
            q = q.filter(models.Account.archived.is_(False))
        return q.order_by(models.Account.id).all()

    def get_account(self, account_id: int, *, user_id: int) -> models.Account:
        account = (
            self.db.query(models.Account)
            .filter(models.Account.id == account_id, models.Account.user_id == user_id)
            .first()
        )
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def create_account(self, payload: schemas.AccountCreate, *, user_id: int) -> schemas.AccountOut:
        """Create an account with its TRANSFER category and INITIAL transaction.

        Everything happens in one unit: the system categories of the user are
        ensured first, then the opening balance is booked as the INITIAL
        transaction so the derived balances come from the ledger.
        """
        with UnitOfWork(self.db, self.events) as uow:
            system = self.categories.ensure_system_categories(user_id=user_id)

            account = models.Account(
                user_id=user_id,
                name=payload.name.strip(),
                type=payload.type,
                institution=payload.institution,
                currency=self._resolve_currency(payload.currency, user_id),
                archived=payload.archived,
                initial_balance=to_money(payload.initial_balance),
            )
            self.db.add(account)
            self.db.flush()

            transfer = models.Category(
                user_id=user_id,
                name=transfer_category_name(account.name),
                kind=models.CategoryKind.TRANSFER,
                linked_account_id=account.id,
                sort_order=0,
            )
            self.db.add(transfer)
            self.db.flush()
            uow.emit("category.created", category_out(transfer).model_dump(mode="json"))

            self.transactions.create_initial_transaction(
                account.id,
                schemas.InitialTransactionCreate(
                    amount=payload.initial_balance,
                    category_id=system[models.CategoryKind.INITIAL].id,
                ),
                user_id=user_id,
            )

            out = account_out(account)
            uow.emit("account.created", out.model_dump(mode="json"))
        logger.info("account.created", user_id=user_id, account_id=out.id, currency=out.currency)
        return out

    def update_account(
        self,
        account_id: int,
        patch: schemas.AccountUpdate,
        *,
        user_id: int,
    ) -> schemas.AccountOut:
        data = patch.model_dump(exclude_unset=True)

        with UnitOfWork(self.db, self.events) as uow:
            account = self.get_account(account_id, user_id=user_id)
            was_archived = account.archived

            if data.get("name") is not None:
                account.name = data["name"].strip()
                self._rename_transfer_category(account)
            if data.get("type") is not None:
                account.type = data["type"]
            if "institution" in data:
                account.institution = data["institution"]
            if data.get("currency") is not None:
                account.currency = data["currency"].upper()
            if data.get("archived") is not None:
                account.archived = data["archived"]
            self.db.flush()

            if data.get("initial_balance") is not None:
                self._set_initial_balance(account, data["initial_balance"], user_id)

            out = account_out(account)
            uow.emit("account.updated", out.model_dump(mode="json"))
            if account.archived and not was_archived:
                uow.emit("account.archived", out.model_dump(mode="json"))
        logger.info("account.updated", user_id=user_id, account_id=account_id, fields=sorted(data))
        return out

    def archive_account(self, account_id: int, *, user_id: int) -> schemas.AccountOut:
        with UnitOfWork(self.db, self.events) as uow:
            account = self.get_account(account_id, user_id=user_id)
            account.archived = True
            self.db.flush()
            out = account_out(account)
            uow.emit("account.archived", out.model_dump(mode="json"))
        logger.info("account.archived", user_id=user_id, account_id=account_id)
        return out

    # ---- Internals -------------------------------------------------------
    def _resolve_currency(self, requested: str | None, user_id: int) -> str:
        if requested:
            return requested.upper()
        base = self.db.scalar(select(models.UserProfile.base_currency).where(models.UserProfile.user_id == user_id))
        return (base or settings.DEFAULT_CURRENCY).upper()

    def _set_initial_balance(self, account: models.Account, amount, user_id: int) -> None:
        # Opening balance lives on the INITIAL transaction; balances follow from the ledger.
        initial = self.db.scalar(
            select(models.Transaction).where(
                models.Transaction.account_id == account.id,
                models.Transaction.transaction_type == models.TransactionType.INITIAL,
            )
        )
        if initial is None:
            system = self.categories.ensure_system_categories(user_id=user_id)
            self.transactions.create_initial_transaction(
                account.id,
                schemas.InitialTransactionCreate(
                    amount=amount,
                    category_id=system[models.CategoryKind.INITIAL].id,
                ),
                user_id=user_id,
            )
            return
        self.transactions.update_transaction(
            account.id,
            initial.id,
            schemas.TransactionUpdate(amount=amount),
            user_id=user_id,
        )

    def _rename_transfer_category(self, account: models.Account) -> None:
        transfer = (
            self.db.query(models.Category)
            .filter(
                models.Category.linked_account_id == account.id,
                models.Category.kind == models.CategoryKind.TRANSFER,
            )
            .first()
        )
        if transfer is not None:
            transfer.name = transfer_category_name(account.name)
