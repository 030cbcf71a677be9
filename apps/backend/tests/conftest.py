from __future__ import annotations

import os
import tempfile
from datetime import date
from typing import Generator, Any

import pytest
from sqlalchemy.orm import sessionmaker

from moneyflow.core.database import Base, build_engine, get_db
from moneyflow.core.deps import get_current_user
from moneyflow.main import app
from moneyflow import models, schemas
from moneyflow.services import RecurringRuleService


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # Temporary file SQLite so the developer database is never touched
    fd, path = tempfile.mkstemp(prefix="moneyflow_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = build_engine(test_db_url, wal=False)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    # Seed: demo user (1) with one category per direction, plus a second owner
    demo = models.User(email="demo@example.com", is_active=True)
    other = models.User(email="other@example.com", is_active=True)
    session.add_all([demo, other])
    session.flush()
    session.add_all(
        [
            models.Category(user_id=demo.id, type=models.FlowDirection.EXPENSE, name="Rent"),
            models.Category(user_id=demo.id, type=models.FlowDirection.INCOME, name="Salary"),
            models.Category(user_id=other.id, type=models.FlowDirection.EXPENSE, name="Groceries"),
        ]
    )
    session.commit()

    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def demo_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="demo@example.com").one()


@pytest.fixture()
def other_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="other@example.com").one()


@pytest.fixture()
def expense_category(db_session, demo_user) -> models.Category:
    return db_session.query(models.Category).filter_by(user_id=demo_user.id, name="Rent").one()


@pytest.fixture()
def income_category(db_session, demo_user) -> models.Category:
    return db_session.query(models.Category).filter_by(user_id=demo_user.id, name="Salary").one()


@pytest.fixture()
def foreign_category(db_session, other_user) -> models.Category:
    return db_session.query(models.Category).filter_by(user_id=other_user.id).one()


@pytest.fixture()
def make_rule(db_session, demo_user, expense_category):
    """Create a monthly expense rule through the rule store; keyword args override."""

    def _make(owner: models.User | None = None, **overrides) -> models.RecurringRule:
        owner = owner or demo_user
        template = {
            "amount": 1500.0,
            "description": "Rent",
            "type": "expense",
            "category_id": expense_category.id if owner.id == demo_user.id else None,
            "tags": ["home"],
        }
        template.update(overrides.pop("template", {}))
        payload = {
            "template": template,
            "frequency": "monthly",
            "start_date": date(2024, 1, 1),
        }
        payload.update(overrides)
        return RecurringRuleService(db_session).create(owner.id, schemas.RecurringRuleCreate(**payload))

    return _make


@pytest.fixture(autouse=True)
def override_dependency(db_session, demo_user):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_current_user] = lambda: demo_user
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def act_as():
    """Switch the API's current user for the rest of the test."""

    def _act_as(user: models.User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _act_as


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
