"""Domain models - pure Python enums and dataclasses representing business entities"""

import enum
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    ACTIVE = "active"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    FAILED = "failed"


class MandateStatus(str, enum.Enum):
    PENDING_AUTH = "pending_auth"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REPLACED = "replaced"


class PaymentAttemptStatus(str, enum.Enum):
    ATTEMPTED = "attempted"
    SUCCESS = "success"
    FAILED = "failed"


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    ARCHIVED = "archived"


class ProviderMandateStatus(str, enum.Enum):
    """Mandate status as reported by the provider, after translation"""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class WebhookOutcome(str, enum.Enum):
    """Result of reconciling one inbound payment event"""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"  # Recorded, but the mandate was not in a state that accepts it
    FAILOVER_PENDING = "failover_pending"  # Mandate failed, backup exists, provider call failed


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller supplied by upstream auth middleware"""

    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class CartLine:
    """Single requested product line"""

    product_id: uuid.UUID
    quantity: int


@dataclass
class InstallmentSchedule:
    """Split of an order total under the kobo-floor rounding policy"""

    total_amount: Decimal
    installments: int
    amount_per_installment: Decimal  # Every installment except the last
    final_installment: Decimal  # Absorbs the rounding remainder

    def amounts(self) -> list[Decimal]:
        return [self.amount_per_installment] * (self.installments - 1) + [self.final_installment]


@dataclass
class AccountOwnership:
    """Result of BVN/account ownership verification"""

    linked: bool
    account_name: Optional[str] = None


@dataclass
class OpenedMandate:
    """Provider acknowledgement of a mandate or single invoice"""

    external_id: str
    virtual_account: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class PaymentInstructions:
    """What the customer has to pay first, and where"""

    virtual_account: Optional[str]
    amount: Decimal
    bank_name: Optional[str]
    message: str = "Transfer the first installment to the virtual account below"
