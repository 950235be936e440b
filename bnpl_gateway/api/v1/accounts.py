"""Customer bank account endpoints"""

import uuid

from fastapi import APIRouter, Depends

from bnpl_gateway.api.dependencies import get_account_service, get_identity
from bnpl_gateway.api.v1.schemas import AccountListResponse, AccountSchema, LinkAccountRequest
from bnpl_gateway.domain.models import CallerIdentity
from bnpl_gateway.infrastructure.database.models import CustomerAccount
from bnpl_gateway.services.accounts import AccountService

router = APIRouter()


def account_schema(account: CustomerAccount) -> AccountSchema:
    return AccountSchema(
        id=str(account.id),
        account_number_masked=f"****{account.account_number[-4:]}",
        bank_code=account.bank_code,
        bank_name=account.bank_name,
        account_name=account.account_name,
        priority=account.priority,
        verified=account.verified,
        bvn_verified_at=account.bvn_verified_at,
    )


@router.post("/customers/{customer_id}/accounts", response_model=AccountSchema, status_code=201)
async def link_account(
    customer_id: uuid.UUID,
    request_body: LinkAccountRequest,
    identity: CallerIdentity = Depends(get_identity),
    service: AccountService = Depends(get_account_service),
):
    """
    Link a bank account after BVN ownership verification.

    The account is ranked after the customer's existing accounts for
    failover; the first linked account has priority 1.
    """
    account = await service.link_account(
        identity,
        customer_id,
        request_body.account_number,
        request_body.bank_code,
        request_body.bank_name,
        request_body.bvn,
    )
    return account_schema(account)


@router.get("/customers/{customer_id}/accounts", response_model=AccountListResponse)
def list_accounts(
    customer_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    service: AccountService = Depends(get_account_service),
):
    accounts = service.list_accounts(identity, customer_id)
    return AccountListResponse(customer_id=str(customer_id), accounts=[account_schema(a) for a in accounts])
