"""SQLAlchemy ORM models for orders, mandates, accounts and payment attempts"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from bnpl_gateway.domain.models import (
    MandateStatus,
    OrderStatus,
    PaymentAttemptStatus,
    ProductStatus,
)

Base = declarative_base()

Money = Numeric(12, 2)


def _status_enum(enum_cls, name: str) -> Enum:
    # Store the lowercase values, not member names, as VARCHAR + CHECK
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


class Customer(Base):
    """Customer profile (owned by the registration service)"""

    __tablename__ = "customers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    accounts = relationship("CustomerAccount", back_populates="customer", order_by="CustomerAccount.priority")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Product(Base):
    """Catalog product (owned by the vendor catalog service)"""

    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Money, nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    status = Column(_status_enum(ProductStatus, "product_status"), nullable=False, default=ProductStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CustomerAccount(Base):
    """Bank account linked to a customer, ranked by failover priority"""

    __tablename__ = "customer_accounts"
    __table_args__ = (
        UniqueConstraint("account_number", "bank_code", name="uq_customer_account_number_bank"),
        UniqueConstraint("customer_id", "priority", name="uq_customer_account_priority"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    account_number = Column(String(20), nullable=False)
    bank_code = Column(String(10), nullable=False)
    bank_name = Column(String(100), nullable=False)
    account_name = Column(String(200), nullable=False)
    priority = Column(Integer, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    bvn_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    customer = relationship("Customer", back_populates="accounts")


class Order(Base):
    """Customer order paid in one go or in installments"""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False, index=True)
    vendor_id = Column(String(64), nullable=False, index=True)
    total_amount = Column(Money, nullable=False)
    installments = Column(Integer, nullable=True)  # NULL = single payment
    amount_per_installment = Column(Money, nullable=True)
    installments_paid = Column(Integer, nullable=False, default=0)
    amount_paid = Column(Money, nullable=False, default=0)
    status = Column(_status_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING)
    current_mandate_id = Column(
        Uuid, ForeignKey("mandates.id", use_alter=True, name="fk_orders_current_mandate"), nullable=True
    )
    order_items = Column(JSON, nullable=False)
    shipping_address = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    current_mandate = relationship("Mandate", foreign_keys=[current_mandate_id], post_update=True)
    mandates = relationship("Mandate", foreign_keys="Mandate.order_id", back_populates="order")


class Mandate(Base):
    """Provider-side recurring debit authorization, tracked locally"""

    __tablename__ = "mandates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    customer_account_id = Column(Uuid, ForeignKey("customer_accounts.id"), nullable=False)
    external_mandate_id = Column(String(255), nullable=False, unique=True)
    virtual_account = Column(String(20), nullable=True)
    amount_per_installment = Column(Money, nullable=False)
    total_installments = Column(Integer, nullable=False)
    installments_paid = Column(Integer, nullable=False, default=0)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(
        _status_enum(MandateStatus, "mandate_status"), nullable=False, default=MandateStatus.PENDING_AUTH
    )
    replaced_by_mandate_id = Column(Uuid, ForeignKey("mandates.id"), nullable=True)
    # Request reference of a replacement open whose outcome is unknown
    pending_failover_reference = Column(String(255), nullable=True)
    locally_synthesized = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    order = relationship("Order", foreign_keys=[order_id], back_populates="mandates")
    account = relationship("CustomerAccount")
    attempts = relationship("PaymentAttempt", back_populates="mandate", order_by="PaymentAttempt.attempted_at")


class PaymentAttempt(Base):
    """Append-only record of one provider debit event"""

    __tablename__ = "payment_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    mandate_id = Column(Uuid, ForeignKey("mandates.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(_status_enum(PaymentAttemptStatus, "payment_attempt_status"), nullable=False)
    failure_reason = Column(Text, nullable=True)
    # Idempotency key: the unique constraint is the authoritative duplicate guard
    transaction_reference = Column(String(255), nullable=False, unique=True)
    webhook_data = Column(Text, nullable=False)
    attempted_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    mandate = relationship("Mandate", back_populates="attempts")
