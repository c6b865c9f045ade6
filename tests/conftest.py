"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; point the app at SQLite before importing it.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from datetime import date, timedelta
from decimal import Decimal
from itertools import count
from typing import Generator

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db, get_mpesa_client
from app.core.config import settings
from app.core.rbac import UserRole
from app.db.base import Base, import_all_models
from app.db.session import build_session_factory
from app.main import app
from app.models.inventory import InventoryItem
from app.models.lab import LabTest
from app.services import inventory as inv_svc

import_all_models()

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


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
    SessionLocal = build_session_factory(db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeDarajaClient:
    """Stands in for the Daraja API; records every STK push it is asked to send."""

    def __init__(self):
        self.calls = []
        self._seq = count(1)

    def stk_push(self, *, phone_number, amount, account_reference, description):
        n = next(self._seq)
        self.calls.append({
            "phone_number": phone_number,
            "amount": amount,
            "account_reference": account_reference,
            "description": description,
        })
        return {
            "MerchantRequestID": f"MR-{n}",
            "CheckoutRequestID": f"ws_CO_TEST_{n}",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }


@pytest.fixture
def fake_mpesa() -> FakeDarajaClient:
    return FakeDarajaClient()


@pytest.fixture(scope="function")
def client(db_session: Session, fake_mpesa: FakeDarajaClient) -> Generator[TestClient, None, None]:
    """Create a test client with database and gateway overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mpesa_client] = lambda: fake_mpesa
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(role: UserRole, user_id: int = 1) -> str:
    return jwt.encode(
        {"sub": str(user_id), "role": role.value, "name": f"Test {role.value.title()}"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALG,
    )


@pytest.fixture
def headers_for():
    """headers_for(UserRole.CASHIER) -> Authorization header dict."""
    def _make(role: UserRole, user_id: int = 1) -> dict:
        return {"Authorization": f"Bearer {make_token(role, user_id)}"}
    return _make


@pytest.fixture
def admin_headers(headers_for) -> dict:
    return headers_for(UserRole.ADMIN)


@pytest.fixture
def test_item(db_session: Session) -> InventoryItem:
    item = InventoryItem(
        name="Paracetamol 500mg",
        generic_name="Acetaminophen",
        category="Analgesics",
        unit="tablet",
        reorder_level=20,
        max_level=1000,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def test_batch(db_session: Session, test_item: InventoryItem):
    """A batch of 10 received through the ledger."""
    return inv_svc.create_batch(
        db_session,
        item_id=test_item.id,
        batch_number="PCM-001",
        quantity=10,
        unit_cost=Decimal("2.50"),
        selling_price=Decimal("5.00"),
        expiry_date=date.today() + timedelta(days=365),
        supplier_name="Kenya Pharma Ltd",
        received_by=1,
    )


@pytest.fixture
def test_lab_test(db_session: Session) -> LabTest:
    t = LabTest(
        test_code="CBC",
        test_name="Complete Blood Count",
        test_category="Hematology",
        specimen_type="Whole blood (EDTA)",
        turnaround_time=4,
        price=Decimal("800.00"),
        reference_ranges={"HGB": "12-16 g/dL"},
    )
    db_session.add(t)
    db_session.commit()
    db_session.refresh(t)
    return t
