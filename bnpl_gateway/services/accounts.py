"""Linking customer bank accounts after BVN ownership verification"""

import logging
import uuid
from typing import List

from sqlalchemy.orm import Session

from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import Forbidden, NotFound, ValidationError
from bnpl_gateway.domain.models import CallerIdentity
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient
from bnpl_gateway.infrastructure.database.models import Customer, CustomerAccount
from bnpl_gateway.infrastructure.database.repositories import AccountRepository, CustomerRepository
from bnpl_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class AccountService:
    """Customer bank accounts, ranked by failover priority"""

    def __init__(self, db: Session, provider: MandateProviderClient):
        self.db = db
        self.provider = provider
        self.customers = CustomerRepository(db)
        self.accounts = AccountRepository(db)

    async def link_account(
        self,
        identity: CallerIdentity,
        customer_id: uuid.UUID,
        account_number: str,
        bank_code: str,
        bank_name: str,
        bvn: str,
    ) -> CustomerAccount:
        """
        Verify BVN ownership and link a new account at the next priority.

        The first account gets priority 1 and each later one the next
        integer. Priority is assigned under a lock on the customer row.

        Raises:
            NotFound: Unknown customer
            Forbidden: Caller neither owns the profile nor is an admin
            ValidationError: Duplicate account, account limit reached, or BVN mismatch
            ProviderError: Verification could not be completed
        """
        try:
            customer = self._authorize(identity, customer_id)

            existing = self.accounts.find_by_number(account_number, bank_code)
            if existing is not None:
                if existing.customer_id == customer.id:
                    raise ValidationError("Account already linked to your profile")
                raise ValidationError("This account is already linked to another user")

            ownership = await self.provider.verify_account_ownership(bvn, account_number, bank_code)
            if not ownership.linked:
                raise ValidationError("BVN doesn't match this account. Please check your details.")

            self.customers.lock(customer.id)
            if self.accounts.count_for_customer(customer.id) >= settings.max_accounts_per_customer:
                raise ValidationError(f"Maximum {settings.max_accounts_per_customer} accounts allowed")

            account = self.accounts.create_account(
                customer_id=customer.id,
                account_number=account_number,
                bank_code=bank_code,
                bank_name=bank_name,
                account_name=ownership.account_name or customer.full_name,
                priority=self.accounts.next_priority(customer.id),
                verified_at=utcnow(),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Account linked for customer {customer_id}",
            extra={"account_id": str(account.id), "priority": account.priority},
        )
        return account

    def list_accounts(self, identity: CallerIdentity, customer_id: uuid.UUID) -> List[CustomerAccount]:
        customer = self._authorize(identity, customer_id)
        return self.accounts.list_for_customer(customer.id)

    def _authorize(self, identity: CallerIdentity, customer_id: uuid.UUID) -> Customer:
        if identity.role not in ("customer", "admin"):
            raise Forbidden("Forbidden: Insufficient permissions")

        customer = self.customers.get_by_id(customer_id)
        if customer is None:
            raise NotFound("Customer not found")
        if not identity.is_admin and customer.user_id != identity.user_id:
            raise Forbidden("Forbidden")
        return customer
