"""Budget router."""

from fastapi import APIRouter

from budget_backend.api import budget as handlers
from budget_backend.schemas import BudgetCategoryOut, BudgetMonthOut

router = APIRouter(prefix="/budget", tags=["budget"])

router.add_api_route(
    "/months/{month}",
    handlers.get_budget_month,
    methods=["GET"],
    response_model=BudgetMonthOut,
)

router.add_api_route(
    "/months/{month}/categories/{category_id}",
    handlers.update_budget_category,
    methods=["PATCH"],
    response_model=BudgetCategoryOut,
)
