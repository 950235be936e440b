"""Unit tests for the OnePipe client against a mocked transport"""

import base64
import json
import uuid
import pytest
import httpx
from decimal import Decimal
from types import SimpleNamespace
from typing import Callable, List

from bnpl_gateway.domain.exceptions import ProviderError, ProviderTimeout
from bnpl_gateway.domain.models import ProviderMandateStatus
from bnpl_gateway.infrastructure.clients.provider import OnePipeClient, encrypt_account_details
from bnpl_gateway.utils.signing import provider_request_signature


CUSTOMER = SimpleNamespace(id=uuid.uuid4(), full_name="Ada Okafor", email="ada@example.com", phone="08030000000")
ACCOUNT = SimpleNamespace(id=uuid.uuid4(), account_number="0123456701", bank_code="058")


def make_client(handler: Callable[[httpx.Request], httpx.Response], max_retries: int = 3) -> OnePipeClient:
    return OnePipeClient(
        base_url="https://provider.test/v2/transact",
        api_key="api-key",
        client_secret="client-secret",
        timeout=1.0,
        mock_mode=True,
        max_retries=max_retries,
        backoff_base=0,
        transport=httpx.MockTransport(handler),
    )


def recording(responses: List) -> tuple[Callable, List[dict]]:
    """Handler replaying `responses` in order; exceptions are raised"""
    seen: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"body": json.loads(request.content), "headers": dict(request.headers)})
        result = responses[min(len(seen), len(responses)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    return handler, seen


def ok(data: dict) -> httpx.Response:
    return httpx.Response(200, json={"status": "Successful", "message": "ok", "data": data})


async def test_verify_account_ownership_signs_and_encrypts():
    handler, seen = recording([ok({"provider_response": {"bvn_linked": True, "account_name": "ADA OKAFOR"}})])
    client = make_client(handler)

    ownership = await client.verify_account_ownership("22222222222", "0123456701", "058")

    assert ownership.linked is True
    body, headers = seen[0]["body"], seen[0]["headers"]
    assert body["request_type"] == "lookup_bvn_min"
    assert body["transaction"]["mock_mode"] == "inspect"
    assert headers["authorization"] == "Bearer api-key"
    assert headers["signature"] == provider_request_signature(body["request_ref"], "client-secret")
    assert body["auth"]["secure"] == encrypt_account_details("0123456701", "058", "client-secret")


async def test_retry_uses_fresh_request_ref_each_attempt():
    handler, seen = recording(
        [
            httpx.Response(503),
            httpx.ConnectError("connection refused"),
            ok({"provider_response": {"mandate_status": "active"}}),
        ]
    )
    client = make_client(handler)

    status = await client.query_mandate_status("MND-1")

    assert status == ProviderMandateStatus.ACTIVE
    refs = [call["body"]["request_ref"] for call in seen]
    assert len(refs) == 3
    assert len(set(refs)) == 3


async def test_retry_gives_up_after_max_attempts():
    handler, seen = recording([httpx.Response(500), httpx.Response(502), httpx.Response(503)])
    client = make_client(handler, max_retries=2)

    with pytest.raises(ProviderError):
        await client.query_mandate_status("MND-1")
    assert len(seen) == 2


async def test_client_error_is_not_retried():
    handler, seen = recording([httpx.Response(400, json={"status": "Failed"})])
    client = make_client(handler)

    with pytest.raises(ProviderError):
        await client.verify_account_ownership("22222222222", "0123456701", "058")
    assert len(seen) == 1


async def test_open_mandate_sends_once_and_parses_reference():
    handler, seen = recording([ok({"provider_response": {"mandate_id": "MND-77", "virtual_account": "9900000077"}})])
    client = make_client(handler)

    opened = await client.open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("90000.00"), 3, uuid.uuid4())

    assert opened.external_id == "MND-77"
    assert opened.start_date is not None and opened.end_date > opened.start_date
    transaction = seen[0]["body"]["transaction"]
    assert seen[0]["body"]["request_type"] == "send_invoice"
    assert transaction["amount"] == "30000.00"
    assert transaction["meta"]["mandate_type"] == "recurring"
    assert transaction["meta"]["mandate_duration"] == 3


async def test_single_invoice_has_no_mandate_terms():
    handler, seen = recording([ok({"reference": "INV-1"})])
    client = make_client(handler)

    await client.open_mandate_or_invoice(CUSTOMER, None, Decimal("5000.00"), 1, uuid.uuid4())

    meta = seen[0]["body"]["transaction"]["meta"]
    assert meta["payment_type"] == "single_payment"
    assert "mandate_type" not in meta


async def test_open_mandate_timeout_requires_reconciliation():
    """A read timeout may have created the mandate: no retry, typed error with the reference"""
    handler, seen = recording([httpx.ReadTimeout("timed out")])
    client = make_client(handler)

    with pytest.raises(ProviderTimeout) as exc_info:
        await client.open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("90000.00"), 3, uuid.uuid4())

    assert len(seen) == 1
    assert exc_info.value.requires_reconciliation is True
    assert exc_info.value.reference == seen[0]["body"]["request_ref"]


async def test_open_mandate_connect_error_is_a_plain_failure():
    handler, seen = recording([httpx.ConnectError("connection refused")])
    client = make_client(handler)

    with pytest.raises(ProviderError) as exc_info:
        await client.open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("90000.00"), 3, uuid.uuid4())

    assert not isinstance(exc_info.value, ProviderTimeout)
    assert len(seen) == 1


async def test_open_mandate_gateway_error_requires_reconciliation():
    """A 5xx in front of send_invoice leaves the outcome unknown; a 4xx is a definite rejection"""
    handler, seen = recording([httpx.Response(502)])
    client = make_client(handler)

    with pytest.raises(ProviderTimeout) as exc_info:
        await client.open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("90000.00"), 3, uuid.uuid4())

    assert len(seen) == 1
    assert exc_info.value.requires_reconciliation is True
    assert exc_info.value.reference == seen[0]["body"]["request_ref"]

    handler, _ = recording([httpx.Response(422)])
    with pytest.raises(ProviderError) as rejected:
        await make_client(handler).open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("90000.00"), 3, uuid.uuid4())
    assert not isinstance(rejected.value, ProviderTimeout)


def test_explicit_zero_settings_are_kept():
    client = OnePipeClient(timeout=0.0, max_retries=0, backoff_base=0.0)

    assert client.timeout == 0.0
    assert client.max_retries == 0
    assert client.backoff_base == 0.0


async def test_zero_max_retries_sends_once():
    handler, seen = recording([httpx.Response(503)])
    client = make_client(handler, max_retries=0)

    with pytest.raises(ProviderError):
        await client.query_mandate_status("MND-1")

    assert len(seen) == 1


async def test_open_mandate_rejected_envelope():
    handler, _ = recording([httpx.Response(200, json={"status": "Failed", "message": "Account blocked"})])
    client = make_client(handler)

    with pytest.raises(ProviderError, match="Account blocked"):
        await client.open_mandate_or_invoice(CUSTOMER, ACCOUNT, Decimal("100.00"), 2, uuid.uuid4())


def test_encrypt_account_details_is_deterministic_base64():
    first = encrypt_account_details("0123456701", "058", "client-secret")
    second = encrypt_account_details("0123456701", "058", "client-secret")

    assert first == second
    assert len(base64.b64decode(first)) % 8 == 0
    assert first != encrypt_account_details("0123456701", "058", "other-secret")
