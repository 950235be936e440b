"""Integration tests for the order endpoints"""

import uuid
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import ProviderTimeout
from bnpl_gateway.domain.models import MandateStatus, OrderStatus, ProductStatus
from bnpl_gateway.infrastructure.database.models import Customer, Mandate, Order

pytestmark = pytest.mark.integration


def order_body(product, quantity=3, installments=3, account=None, **extra):
    body = {
        "items": [{"productId": str(product.id), "quantity": quantity}],
        "shippingAddress": "12 Allen Avenue, Ikeja, Lagos",
    }
    if installments is not None:
        body["installments"] = installments
    if account is not None:
        body["accountId"] = str(account.id)
    body.update(extra)
    return body


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "bnpl_orders_created_total" in response.text
    assert "bnpl_webhook_events_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_installment_order(
    client: TestClient, db: Session, provider, customer, customer_headers, make_product, make_accounts
):
    """3 units at 30,000 over 3 months: one mandate of 30,000 per month"""
    product = make_product(price="30000.00", stock=10)
    (account,) = make_accounts(customer, count=1)

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["order"]["status"] == "authorized"
    assert Decimal(str(data["order"]["total_amount"])) == Decimal("90000.00")
    assert data["order"]["items"][0]["quantity"] == 3
    assert data["mandate"]["status"] == "pending_auth"
    assert Decimal(str(data["mandate"]["amount_per_installment"])) == Decimal("30000.00")
    assert data["mandate"]["total_installments"] == 3
    assert data["mandate"]["locally_synthesized"] is False
    assert data["payment_instructions"]["virtual_account"] == data["mandate"]["virtual_account"]

    opened = provider.last_opened()
    assert opened.arguments["installments"] == 3
    assert opened.arguments["amount"] == Decimal("90000.00")
    assert opened.arguments["account_id"] == account.id

    db.refresh(product)
    assert product.stock_quantity == 7
    order = db.get(Order, uuid.UUID(data["order"]["id"]))
    assert order.current_mandate_id == uuid.UUID(data["mandate"]["id"])


def test_create_single_payment_order(client: TestClient, db: Session, provider, customer, customer_headers, make_product):
    """Single payment opens an invoice and no mandate"""
    product = make_product(price="5000.00", stock=2)

    response = client.post(
        "/v1/orders", json=order_body(product, quantity=2, installments=None), headers=customer_headers
    )

    assert response.status_code == 201
    data = response.json()
    assert data["mandate"] is None
    assert data["order"]["status"] == "pending"
    assert provider.last_opened().arguments["installments"] == 1
    assert db.query(Mandate).count() == 0

    db.refresh(product)
    assert product.stock_quantity == 0
    assert product.status == ProductStatus.OUT_OF_STOCK


def test_provider_failure_rolls_back_everything(
    client: TestClient, db: Session, provider, customer, customer_headers, make_product, make_accounts
):
    product = make_product(stock=10)
    (account,) = make_accounts(customer, count=1)
    provider.fail_next("open_mandate_or_invoice")

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 502
    assert response.json()["error"]["category"] == "provider_error"
    db.refresh(product)
    assert product.stock_quantity == 10
    assert db.query(Order).count() == 0
    assert db.query(Mandate).count() == 0


def test_provider_timeout_is_never_degraded(
    client: TestClient, db: Session, provider, customer, customer_headers, make_product, make_accounts, monkeypatch
):
    """Outcome unknown: nothing persisted, caller told to reconcile"""
    monkeypatch.setattr(settings, "degraded_mode", True)
    product = make_product(stock=10)
    (account,) = make_accounts(customer, count=1)
    provider.fail_next("open_mandate_or_invoice", ProviderTimeout("Provider timeout", reference="INV_1"))

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 504
    error = response.json()["error"]
    assert error["category"] == "provider_timeout"
    assert error["requires_reconciliation"] is True
    assert error["reference"] == "INV_1"
    assert db.query(Order).count() == 0
    db.refresh(product)
    assert product.stock_quantity == 10


def test_degraded_mode_synthesizes_local_mandate(
    client: TestClient, db: Session, provider, customer, customer_headers, make_product, make_accounts, monkeypatch
):
    monkeypatch.setattr(settings, "degraded_mode", True)
    product = make_product(stock=10)
    (account,) = make_accounts(customer, count=1)
    provider.fail_next("open_mandate_or_invoice")

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 201
    mandate = response.json()["mandate"]
    assert mandate["external_mandate_id"].startswith("LOCAL-")
    assert mandate["locally_synthesized"] is True
    assert db.get(Mandate, uuid.UUID(mandate["id"])).locally_synthesized is True


def test_insufficient_stock(client: TestClient, db: Session, customer, customer_headers, make_product, make_accounts):
    product = make_product(stock=2)
    (account,) = make_accounts(customer, count=1)

    response = client.post(
        "/v1/orders", json=order_body(product, quantity=3, account=account), headers=customer_headers
    )

    assert response.status_code == 409
    assert response.json()["error"]["category"] == "insufficient_stock"
    db.refresh(product)
    assert product.stock_quantity == 2


def test_archived_product_rejected(client: TestClient, customer, customer_headers, make_product, make_accounts):
    product = make_product(status=ProductStatus.ARCHIVED)
    (account,) = make_accounts(customer, count=1)

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 400


def test_unknown_product(client: TestClient, customer, customer_headers, make_accounts):
    (account,) = make_accounts(customer, count=1)
    body = {
        "items": [{"productId": str(uuid.uuid4()), "quantity": 1}],
        "installments": 2,
        "accountId": str(account.id),
        "shippingAddress": "Lagos",
    }

    response = client.post("/v1/orders", json=body, headers=customer_headers)

    assert response.status_code == 404


def test_installments_require_account(client: TestClient, customer, customer_headers, make_product):
    product = make_product()

    response = client.post("/v1/orders", json=order_body(product), headers=customer_headers)

    assert response.status_code == 400
    assert response.json()["error"]["category"] == "validation_error"


def test_unverified_account_rejected(client: TestClient, customer, customer_headers, make_product, make_accounts):
    product = make_product()
    (account,) = make_accounts(customer, count=1, verified=False)

    response = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers)

    assert response.status_code == 400
    assert "not verified" in response.json()["error"]["message"]


def test_other_customers_account_rejected(
    client: TestClient, db: Session, customer, customer_headers, make_product, make_accounts
):
    other = Customer(user_id="user_bola", first_name="Bola", last_name="Ade")
    db.add(other)
    db.commit()
    (foreign_account,) = make_accounts(other, count=1)
    product = make_product()

    response = client.post(
        "/v1/orders", json=order_body(product, account=foreign_account), headers=customer_headers
    )

    assert response.status_code == 400


def test_installment_count_above_limit(client: TestClient, customer, customer_headers, make_product, make_accounts):
    product = make_product()
    (account,) = make_accounts(customer, count=1)

    response = client.post(
        "/v1/orders", json=order_body(product, installments=13, account=account), headers=customer_headers
    )

    assert response.status_code == 400


def test_empty_cart_rejected(client: TestClient, customer, customer_headers):
    response = client.post(
        "/v1/orders", json={"items": [], "shippingAddress": "Lagos"}, headers=customer_headers
    )

    assert response.status_code == 400
    assert response.json()["error"]["category"] == "validation_error"


def test_missing_identity(client: TestClient, make_product):
    response = client.post("/v1/orders", json=order_body(make_product(), installments=None))
    assert response.status_code == 401


def test_vendor_cannot_create_order(client: TestClient, customer, make_product):
    response = client.post(
        "/v1/orders",
        json=order_body(make_product(), installments=None),
        headers={"X-User-Id": "vendor_1", "X-User-Role": "vendor"},
    )
    assert response.status_code == 403


def test_get_and_list_orders(
    client: TestClient, db: Session, customer, customer_headers, admin_headers, make_product, make_accounts
):
    product = make_product(stock=10)
    (account,) = make_accounts(customer, count=1)
    created = client.post("/v1/orders", json=order_body(product, account=account), headers=customer_headers).json()
    order_id = created["order"]["id"]

    own = client.get(f"/v1/orders/{order_id}", headers=customer_headers)
    assert own.status_code == 200
    assert own.json()["mandate"]["id"] == created["mandate"]["id"]

    assert client.get(f"/v1/orders/{order_id}", headers=admin_headers).status_code == 200

    db.add(Customer(user_id="user_bola", first_name="Bola", last_name="Ade"))
    db.commit()
    stranger = client.get(f"/v1/orders/{order_id}", headers={"X-User-Id": "user_bola", "X-User-Role": "customer"})
    assert stranger.status_code == 403

    assert client.get(f"/v1/orders/{uuid.uuid4()}", headers=customer_headers).status_code == 404

    listing = client.get("/v1/orders", headers=customer_headers)
    assert listing.status_code == 200
    assert [o["id"] for o in listing.json()["orders"]] == [order_id]

    order = db.get(Order, uuid.UUID(order_id))
    assert order.status == OrderStatus.AUTHORIZED
    assert db.get(Mandate, order.current_mandate_id).status == MandateStatus.PENDING_AUTH
