"""Pytest configuration and fixtures."""

import os

# keep the app's module-level engine off the project database
os.environ.setdefault("QUEUE_DATABASE_URL", "sqlite://")
os.environ.setdefault("QUEUE_RECALC_ON_CHANGE", "true")

from datetime import date
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from queue_server.app.api import app
from queue_server.app.db import Base, get_db
from queue_server.app.models import Branch, Counter, Service, Staff

TEST_DATABASE_URL = "sqlite:///:memory:"
TODAY = date(2026, 3, 2)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def branch(db_session: Session) -> Branch:
    branch = Branch(name="Downtown", address="1 Main St", phone="555-0100", is_active=True)
    db_session.add(branch)
    db_session.commit()
    db_session.refresh(branch)
    return branch


@pytest.fixture
def general(db_session: Session, branch: Branch) -> Service:
    """Service "General", 15 minutes per customer, prefix derived from the name."""
    service = Service(branch_id=branch.id, name="General", estimated_duration=15, status="active")
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def loans(db_session: Session, branch: Branch) -> Service:
    service = Service(branch_id=branch.id, name="Loans", prefix="LN", estimated_duration=20,
                      status="active")
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def counter(db_session: Session, branch: Branch) -> Counter:
    counter = Counter(branch_id=branch.id, name="Counter 1", is_active=True)
    db_session.add(counter)
    db_session.commit()
    db_session.refresh(counter)
    return counter


@pytest.fixture
def staff(db_session: Session, branch: Branch, counter: Counter) -> Staff:
    member = Staff(branch_id=branch.id, counter_id=counter.id, name="Dana", role="staff",
                   status="active")
    db_session.add(member)
    db_session.commit()
    db_session.refresh(member)
    return member
