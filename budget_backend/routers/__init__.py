"""Router aggregation.

Each feature module declares its routes against the handlers in
``budget_backend.api``; ``register_routers`` mounts them under ``/api``.
"""

from fastapi import FastAPI

from . import accounts, budget, categories, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(accounts.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
    app.include_router(categories.router, prefix="/api")
    app.include_router(budget.router, prefix="/api")
