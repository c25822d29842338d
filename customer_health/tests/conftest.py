"""
conftest.py
------------
Pytest fixtures for FastAPI + SQLAlchemy tests.

Goals:
- Provide a fast, isolated test database (SQLite) that does NOT touch the real Postgres.
- Hand the app an already-connected `Database` so its lifespan hook has nothing to do.
- Override the app's `get_db` dependency so API tests share the test Session.
- Create tables once per test session, and clean rows between tests.

Why SQLite (file) and not in-memory?
- FastAPI's TestClient may run requests in different threads.
- SQLite in-memory DB is process-local *and* connection-local; different connections
  would see different (empty) DBs.
- A temporary **file-backed** SQLite database is visible to all connections in the
  test process and needs no external services.

Fixture scopes:
- `test_database`: session-scoped `Database` bound to a temp file; creates tables once.
- `db_session`: function-scoped Session; cleans all tables between tests.
- `app` / `client`: function-scoped app + TestClient using `db_session`.
- `make_customer`: factory for Customer rows with Faker-generated profiles.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta

import pytest
from faker import Faker
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so `import customer_health.*` works during pytest collection
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from customer_health.db import Base, Database, get_db
from customer_health.main import create_app
from customer_health.models import Customer


@pytest.fixture(scope="session")
def test_database():
    """
    Connected `Database` on a temporary SQLite **file**.

    `check_same_thread=False` lets the TestClient's worker thread reuse
    connections created in the test thread.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    database = Database(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    database.connect()
    yield database

    database.dispose()  # release file handle before removing it
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


@pytest.fixture(scope="function")
def db_session(test_database):
    """
    Fresh Session per test; all rows are deleted afterwards.

    Rows go in reverse dependency order so child tables are cleared first.
    """
    session = test_database.session()
    try:
        yield session
    finally:
        session.rollback()
        for tbl in reversed(Base.metadata.sorted_tables):
            session.execute(tbl.delete())
        session.commit()
        session.close()


@pytest.fixture(scope="function")
def app(test_database):
    return create_app(database=test_database)


@pytest.fixture(scope="function")
def client(app, db_session):
    """
    TestClient whose requests all run on `db_session`.

    Usage in tests:
        def test_something(client, db_session):
            # Arrange: write directly with db_session
            # Act: call endpoints with client
            # Assert: verify responses and/or DB state
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def fake():
    Faker.seed(1234)
    return Faker()


@pytest.fixture
def make_customer(db_session, fake):
    """Insert and return a Customer; any column can be overridden."""
    def _make(**overrides):
        fields = {
            "company_name": fake.company(),
            "contact_email": fake.company_email(),
            "contact_name": fake.name(),
            "segment": fake.random_element(["enterprise", "smb", "startup"]),
            "plan_type": fake.random_element(["basic", "standard", "premium", "enterprise"]),
            "monthly_revenue": float(fake.random_int(min=500, max=10500)),
            "signup_date": datetime.utcnow() - timedelta(days=fake.random_int(min=30, max=700)),
        }
        fields.update(overrides)
        customer = Customer(**fields)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make
