"""
Shared fixtures: in-memory database, scripted oracle, budget categories.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payee_engine.ledger import Category
from payee_engine.models import Base
from tests.fakes import FakeOracle


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def categories():
    return [
        Category(id="cat-coffee", name="Coffee Shops", group_name="Food"),
        Category(id="cat-dining", name="Restaurants", group_name="Food"),
        Category(id="cat-groceries", name="Groceries", group_name="Food"),
        Category(id="cat-shopping", name="Shopping", group_name="Lifestyle"),
        Category(id="cat-salary", name="Salary", group_name="Income", is_income=True),
        Category(id="cat-old", name="Old Stuff", group_name="Archive", hidden=True),
    ]
