from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from budget_backend import models
from budget_backend.core.errors import NotFoundError
from budget_backend.utils.money import to_money


class LedgerEntry(Protocol):
    id: int
    amount: Decimal
    transaction_type: models.TransactionType


def compute_running_balances(
    ledger: Iterable[LedgerEntry],
    start: Decimal = Decimal("0"),
) -> dict[int, Decimal]:
    """Fold an ordered ledger into ``{transaction_id: balance_after}``.

    An INITIAL entry resets the running total to its own amount instead of
    adding to it.
    """
    running = to_money(start)
    balances: dict[int, Decimal] = {}
    for entry in ledger:
        amount = to_money(entry.amount)
        if entry.transaction_type is models.TransactionType.INITIAL:
            running = amount
        else:
            running = running + amount
        balances[entry.id] = running
    return balances


class BalanceService:
    """Derive account balances from the transaction table.

    Balances are always recomputed from a full aggregate; nothing is
    incremented in place.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def recalculate_account_balances(self, account_id: int) -> models.Account:
        self.db.flush()
        account = self.db.get(models.Account, account_id, with_for_update=True)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")

        txn = models.Transaction
        total, pointed, reconciled = self.db.execute(
            select(
                func.coalesce(func.sum(txn.amount), 0),
                func.coalesce(
                    func.sum(case((txn.status.in_(models.POINTED_STATUSES), txn.amount), else_=0)),
                    0,
                ),
                func.coalesce(
                    func.sum(case((txn.status == models.TransactionStatus.RECONCILED, txn.amount), else_=0)),
                    0,
                ),
            ).where(txn.account_id == account_id)
        ).one()

        account.current_balance = to_money(total)
        account.pointed_balance = to_money(pointed)
        account.reconciled_balance = to_money(reconciled)
        self.db.flush()
        return account

    def ledger(self, account_id: int) -> list[models.Transaction]:
        """All transactions of an account in running-balance order."""
        self.db.flush()
        return list(
            self.db.scalars(
                select(models.Transaction)
                .where(models.Transaction.account_id == account_id)
                .order_by(
                    models.Transaction.date.asc(),
                    models.Transaction.created_at.asc(),
                    models.Transaction.id.asc(),
                )
            )
        )

    def running_balances(self, account_id: int) -> dict[int, Decimal]:
        return compute_running_balances(self.ledger(account_id))
