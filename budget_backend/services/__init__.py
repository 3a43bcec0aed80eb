"""
Service layer

Business rules for accounts, categories, transactions and the monthly budget.
"""

from .account_service import AccountService
from .balance_service import BalanceService, compute_running_balances
from .budget_recalculation_service import BudgetRecalculationService, RecalculationResult
from .budget_service import BudgetService
from .budget_structure_service import BudgetStructureService
from .category_service import CategoryService
from .transaction_service import TransactionService
from .unit_of_work import UnitOfWork

__all__ = [
    "AccountService",
    "BalanceService",
    "compute_running_balances",
    "BudgetRecalculationService",
    "RecalculationResult",
    "BudgetService",
    "BudgetStructureService",
    "CategoryService",
    "TransactionService",
    "UnitOfWork",
]
