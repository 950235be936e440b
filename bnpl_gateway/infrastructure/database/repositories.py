"""Data access layer for BNPL entities"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from bnpl_gateway.infrastructure.database.models import (
    Customer,
    CustomerAccount,
    Mandate,
    Order,
    PaymentAttempt,
    Product,
)


class CustomerRepository:
    """Repository for customer profiles"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, customer_id: uuid.UUID) -> Optional[Customer]:
        return self.db.get(Customer, customer_id)

    def get_by_user_id(self, user_id: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.user_id == user_id).first()

    def lock(self, customer_id: uuid.UUID) -> Optional[Customer]:
        """Row-lock a customer to serialize account and failover work for that customer"""
        return (
            self.db.query(Customer)
            .filter(Customer.id == customer_id)
            .with_for_update()
            .populate_existing()
            .first()
        )


class ProductRepository:
    """Repository for catalog products"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_update(self, product_id: uuid.UUID) -> Optional[Product]:
        """Fetch product with a row lock for stock decrement"""
        return self.db.query(Product).filter(Product.id == product_id).with_for_update().first()


class AccountRepository:
    """Repository for customer bank accounts"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, account_id: uuid.UUID) -> Optional[CustomerAccount]:
        return self.db.get(CustomerAccount, account_id)

    def find_by_number(self, account_number: str, bank_code: str) -> Optional[CustomerAccount]:
        return (
            self.db.query(CustomerAccount)
            .filter(CustomerAccount.account_number == account_number, CustomerAccount.bank_code == bank_code)
            .first()
        )

    def list_for_customer(self, customer_id: uuid.UUID) -> List[CustomerAccount]:
        return (
            self.db.query(CustomerAccount)
            .filter(CustomerAccount.customer_id == customer_id)
            .order_by(CustomerAccount.priority.asc())
            .all()
        )

    def count_for_customer(self, customer_id: uuid.UUID) -> int:
        return self.db.query(CustomerAccount).filter(CustomerAccount.customer_id == customer_id).count()

    def next_priority(self, customer_id: uuid.UUID) -> int:
        """1 for the first account, otherwise one past the current highest"""
        current = (
            self.db.query(func.max(CustomerAccount.priority))
            .filter(CustomerAccount.customer_id == customer_id)
            .scalar()
        )
        return (current or 0) + 1

    def find_next_verified(self, customer_id: uuid.UUID, after_priority: int) -> Optional[CustomerAccount]:
        """Most preferred verified account ranked below the given priority"""
        return (
            self.db.query(CustomerAccount)
            .filter(
                CustomerAccount.customer_id == customer_id,
                CustomerAccount.priority > after_priority,
                CustomerAccount.verified.is_(True),
            )
            .order_by(CustomerAccount.priority.asc())
            .first()
        )

    def create_account(
        self,
        customer_id: uuid.UUID,
        account_number: str,
        bank_code: str,
        bank_name: str,
        account_name: str,
        priority: int,
        verified_at: Optional[datetime],
    ) -> CustomerAccount:
        db_account = CustomerAccount(
            customer_id=customer_id,
            account_number=account_number,
            bank_code=bank_code,
            bank_name=bank_name,
            account_name=account_name,
            priority=priority,
            verified=verified_at is not None,
            bvn_verified_at=verified_at,
        )
        self.db.add(db_account)
        self.db.flush()
        return db_account


class OrderRepository:
    """Repository for orders"""

    def __init__(self, db: Session):
        self.db = db

    def create_order(self, **fields) -> Order:
        """Persist order to database"""
        db_order = Order(installments_paid=0, amount_paid=0, **fields)
        self.db.add(db_order)
        self.db.flush()  # Get ID without committing
        return db_order

    def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        return self.db.get(Order, order_id)

    def get_for_update(self, order_id: uuid.UUID) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def list_for_customer(self, customer_id: uuid.UUID, limit: int = 50) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
            .all()
        )


class MandateRepository:
    """Repository for payment mandates"""

    def __init__(self, db: Session):
        self.db = db

    def create_mandate(self, **fields) -> Mandate:
        db_mandate = Mandate(installments_paid=0, **fields)
        self.db.add(db_mandate)
        self.db.flush()
        return db_mandate

    def get_by_id(self, mandate_id: uuid.UUID) -> Optional[Mandate]:
        return self.db.get(Mandate, mandate_id)

    def get_by_external_id(self, external_mandate_id: str) -> Optional[Mandate]:
        return (
            self.db.query(Mandate)
            .filter(Mandate.external_mandate_id == external_mandate_id)
            .with_for_update()
            .first()
        )


class PaymentAttemptRepository:
    """Repository for the append-only payment attempt log"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_reference(self, transaction_reference: str) -> Optional[PaymentAttempt]:
        return (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.transaction_reference == transaction_reference)
            .first()
        )

    def record(self, **fields) -> Optional[PaymentAttempt]:
        """
        Insert an attempt row.

        Returns None when another delivery already stored the same
        transaction_reference (unique constraint violation). The session
        is rolled back in that case.
        """
        db_attempt = PaymentAttempt(**fields)
        self.db.add(db_attempt)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return None
        return db_attempt

    def count_since(self, since: datetime) -> int:
        return self.db.query(PaymentAttempt).filter(PaymentAttempt.attempted_at >= since).count()

    def latest(self) -> Optional[PaymentAttempt]:
        return self.db.query(PaymentAttempt).order_by(PaymentAttempt.attempted_at.desc()).first()
