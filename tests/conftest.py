"""Pytest fixtures for testing"""

import json
import uuid
from decimal import Decimal
from typing import Callable, Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

from bnpl_gateway.api.main import create_app
from bnpl_gateway.config import settings
from bnpl_gateway.domain.models import ProductStatus
from bnpl_gateway.infrastructure.clients.fake_provider import FakeMandateProvider
from bnpl_gateway.infrastructure.database.models import Base, Customer, CustomerAccount, Product
from bnpl_gateway.infrastructure.database.session import build_engine, get_db
from bnpl_gateway.utils.date_utils import utcnow
from bnpl_gateway.utils.signing import compute_webhook_signature


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

WEBHOOK_SECRET = "test-webhook-secret"
CUSTOMER_USER_ID = "user_ada"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings for every test"""
    monkeypatch.setattr(settings, "webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "degraded_mode", False)
    monkeypatch.setattr(settings, "max_installments", 12)
    monkeypatch.setattr(settings, "max_accounts_per_customer", 3)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def provider() -> FakeMandateProvider:
    return FakeMandateProvider()


@pytest.fixture
def client(db: Session, provider: FakeMandateProvider) -> TestClient:
    """Create FastAPI test client with test database and the in-memory provider"""
    app = create_app(provider_client=provider)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def customer(db: Session) -> Customer:
    db_customer = Customer(
        user_id=CUSTOMER_USER_ID,
        first_name="Ada",
        last_name="Okafor",
        email="ada@example.com",
        phone="+2348030000000",
    )
    db.add(db_customer)
    db.commit()
    return db_customer


@pytest.fixture
def customer_headers() -> dict:
    return {"X-User-Id": CUSTOMER_USER_ID, "X-User-Role": "customer"}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-User-Id": "ops_1", "X-User-Role": "admin"}


@pytest.fixture
def make_product(db: Session) -> Callable[..., Product]:
    def _make(price: str = "30000.00", stock: int = 10, status: ProductStatus = ProductStatus.ACTIVE) -> Product:
        product = Product(
            vendor_id="vendor_1",
            name=f"Product {uuid.uuid4().hex[:6]}",
            price=Decimal(price),
            stock_quantity=stock,
            status=status,
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_accounts(db: Session) -> Callable[..., List[CustomerAccount]]:
    """Verified accounts with priorities 1..count for a customer"""

    def _make(customer: Customer, count: int = 1, verified: bool = True) -> List[CustomerAccount]:
        accounts = []
        for priority in range(1, count + 1):
            account = CustomerAccount(
                customer_id=customer.id,
                account_number=f"01234567{priority:02d}",
                bank_code="058",
                bank_name="GTBank",
                account_name=customer.full_name,
                priority=priority,
                verified=verified,
                bvn_verified_at=utcnow() if verified else None,
            )
            db.add(account)
            accounts.append(account)
        db.commit()
        return accounts

    return _make


@pytest.fixture
def post_webhook(client: TestClient) -> Callable:
    """POST a payment event with a valid signature"""

    def _post(payload: dict, signature: str | None = None):
        body = json.dumps(payload).encode()
        if signature is None:
            signature = compute_webhook_signature(body, WEBHOOK_SECRET)
        headers = {"Content-Type": "application/json", settings.webhook_signature_header: signature}
        return client.post("/webhooks/onepipe", content=body, headers=headers)

    return _post
