"""In-process mandate provider for local runs and tests"""

import itertools
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from bnpl_gateway.domain.exceptions import ProviderError
from bnpl_gateway.domain.models import AccountOwnership, OpenedMandate, ProviderMandateStatus
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient
from bnpl_gateway.utils.date_utils import mandate_window


@dataclass
class ProviderCall:
    """One recorded call against the fake"""

    operation: str
    arguments: Dict[str, Any] = field(default_factory=dict)


class FakeMandateProvider(MandateProviderClient):
    """
    Recording provider double.

    Every call is appended to `calls`. Failures are scripted per operation
    with `fail_next(operation, error)`; account ownership answers come from
    `ownership` (default: linked, named after the account number).
    """

    def __init__(self):
        self.calls: List[ProviderCall] = []
        self.ownership: Dict[Tuple[str, str], AccountOwnership] = {}
        self.statuses: Dict[str, ProviderMandateStatus] = {}
        self._failures: Dict[str, List[Exception]] = {}
        self._sequence = itertools.count(1)

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        self._failures.setdefault(operation, []).append(error or ProviderError("Provider unavailable"))

    def calls_for(self, operation: str) -> List[ProviderCall]:
        return [call for call in self.calls if call.operation == operation]

    def _record(self, operation: str, **arguments) -> None:
        self.calls.append(ProviderCall(operation=operation, arguments=arguments))
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    async def verify_account_ownership(self, bvn: str, account_number: str, bank_code: str) -> AccountOwnership:
        self._record("verify_account_ownership", bvn=bvn, account_number=account_number, bank_code=bank_code)
        return self.ownership.get(
            (account_number, bank_code),
            AccountOwnership(linked=True, account_name=f"Account Holder {account_number[-4:]}"),
        )

    async def open_mandate_or_invoice(
        self,
        customer,
        account,
        amount: Decimal,
        installments: int,
        order_id: uuid.UUID,
    ) -> OpenedMandate:
        self._record(
            "open_mandate_or_invoice",
            customer_id=customer.id,
            account_id=getattr(account, "id", None),
            amount=amount,
            installments=installments,
            order_id=order_id,
        )
        sequence = next(self._sequence)
        start_date, end_date = mandate_window(installments)
        external_id = f"FAKE-MND-{sequence:06d}"
        self.statuses[external_id] = ProviderMandateStatus.PENDING
        return OpenedMandate(
            external_id=external_id,
            virtual_account=f"99{sequence:08d}",
            start_date=start_date,
            end_date=end_date,
        )

    async def query_mandate_status(self, external_id: str) -> ProviderMandateStatus:
        self._record("query_mandate_status", external_id=external_id)
        return self.statuses.get(external_id, ProviderMandateStatus.UNKNOWN)

    def last_opened(self) -> Optional[ProviderCall]:
        opened = self.calls_for("open_mandate_or_invoice")
        return opened[-1] if opened else None
