"""Transactions router, nested under an account."""

from fastapi import APIRouter

from budget_backend.api import transactions as handlers
from budget_backend.schemas import TransactionListOut, TransactionOut

router = APIRouter(prefix="/accounts/{account_id}/transactions", tags=["transactions"])

router.add_api_route(
    "",
    handlers.list_transactions,
    methods=["GET"],
    response_model=TransactionListOut,
)

router.add_api_route(
    "",
    handlers.create_transaction,
    methods=["POST"],
    response_model=TransactionOut,
    status_code=201,
)

router.add_api_route(
    "/initial",
    handlers.create_initial_transaction,
    methods=["POST"],
    response_model=TransactionOut,
    status_code=201,
)

router.add_api_route(
    "/{txn_id}",
    handlers.get_transaction,
    methods=["GET"],
    response_model=TransactionOut,
)

router.add_api_route(
    "/{txn_id}",
    handlers.update_transaction,
    methods=["PATCH"],
    response_model=TransactionOut,
)

router.add_api_route(
    "/{txn_id}",
    handlers.delete_transaction,
    methods=["DELETE"],
    response_model=TransactionOut,
)
