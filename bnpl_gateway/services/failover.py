"""Backup account selection when a mandate's debit fails"""

from typing import Optional

from sqlalchemy.orm import Session

from bnpl_gateway.infrastructure.database.models import CustomerAccount
from bnpl_gateway.infrastructure.database.repositories import AccountRepository, CustomerRepository


class FailoverSelector:
    """Picks the next verified account in a customer's priority order"""

    def __init__(self, db: Session):
        self.accounts = AccountRepository(db)
        self.customers = CustomerRepository(db)

    def lock_customer(self, customer_id) -> None:
        """
        Row-lock the customer for the rest of the transaction.

        Selection and the replacement mandate that consumes it must run
        under this lock so concurrent failures for the same customer are
        serialized.
        """
        self.customers.lock(customer_id)

    def select_backup(self, failed_account: CustomerAccount) -> Optional[CustomerAccount]:
        """
        Return the most preferred remaining account, or None.

        Candidates are the customer's verified accounts ranked strictly
        after the failed one (priority > failed priority), lowest priority
        number first. Priorities are unique per customer, so there are no ties.
        """
        return self.accounts.find_next_verified(failed_account.customer_id, failed_account.priority)
