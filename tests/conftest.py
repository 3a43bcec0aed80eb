from __future__ import annotations

import os
import tempfile
from typing import Any, Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from budget_backend import models, schemas
from budget_backend.core.database import Base, get_db
from budget_backend.core.deps import get_event_sink
from budget_backend.main import app
from budget_backend.services import AccountService, BudgetService, CategoryService, TransactionService


class RecordingSink:
    """Event sink that keeps every emitted event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def emit(self, event_name: str, payload: Any) -> None:
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, event_name: str) -> list[Any]:
        return [payload for name, payload in self.events if name == event_name]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # Temp file SQLite so the developer database is never touched
    fd, path = tempfile.mkstemp(prefix="budget_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    # Seed: one demo user whose profile currency differs from the settings default
    user = models.User(email="demo@example.com", is_active=True)
    session.add(user)
    session.flush()
    session.add(models.UserProfile(user_id=user.id, display_name="Demo", base_currency="USD"))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def user(db_session) -> models.User:
    return db_session.scalar(select(models.User).where(models.User.email == "demo@example.com"))


@pytest.fixture()
def other_user(db_session) -> models.User:
    row = models.User(email="other@example.com", is_active=True)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture()
def events() -> RecordingSink:
    return RecordingSink()


@pytest.fixture(autouse=True)
def override_dependency(db_session, events):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_event_sink] = lambda: events
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def account_service(db_session, events) -> AccountService:
    return AccountService(db_session, events)


@pytest.fixture()
def category_service(db_session, events) -> CategoryService:
    return CategoryService(db_session, events)


@pytest.fixture()
def transaction_service(db_session, events) -> TransactionService:
    return TransactionService(db_session, events)


@pytest.fixture()
def budget_service(db_session, events) -> BudgetService:
    return BudgetService(db_session, events)


@pytest.fixture()
def account(account_service, user) -> schemas.AccountOut:
    return account_service.create_account(
        schemas.AccountCreate(name="Checking", initial_balance="100"),
        user_id=user.id,
    )


@pytest.fixture()
def living(category_service, user) -> schemas.CategoryOut:
    return category_service.create_category(schemas.CategoryCreate(name="Living"), user_id=user.id)


@pytest.fixture()
def groceries(category_service, user, living) -> schemas.CategoryOut:
    return category_service.create_category(
        schemas.CategoryCreate(name="Groceries", parent_category_id=living.id),
        user_id=user.id,
    )


@pytest.fixture()
def income_category(db_session, account, user) -> models.Category:
    return db_session.scalar(
        select(models.Category).where(
            models.Category.user_id == user.id,
            models.Category.kind == models.CategoryKind.INCOME,
        )
    )
