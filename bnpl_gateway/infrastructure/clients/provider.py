"""Mandate provider HTTP client (OnePipe PayWithAccount v2)"""

import asyncio
import base64
import hashlib
import logging
import time
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, modes

from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import ProviderError, ProviderTimeout
from bnpl_gateway.domain.installments import split_installments
from bnpl_gateway.domain.models import AccountOwnership, OpenedMandate, ProviderMandateStatus
from bnpl_gateway.infrastructure.clients import onepipe_v2
from bnpl_gateway.infrastructure.observability.metrics import (
    provider_failure_counter,
    provider_latency_histogram,
)
from bnpl_gateway.utils.date_utils import mandate_window
from bnpl_gateway.utils.signing import provider_request_signature

logger = logging.getLogger(__name__)


class MandateProviderClient(ABC):
    """Boundary to the external mandate service"""

    @abstractmethod
    async def verify_account_ownership(self, bvn: str, account_number: str, bank_code: str) -> AccountOwnership:
        """Check that the BVN owns the bank account"""

    @abstractmethod
    async def open_mandate_or_invoice(
        self,
        customer,
        account,
        amount: Decimal,
        installments: int,
        order_id: uuid.UUID,
    ) -> OpenedMandate:
        """Open a recurring mandate (installments > 1) or a single-payment invoice"""

    @abstractmethod
    async def query_mandate_status(self, external_id: str) -> ProviderMandateStatus:
        """Fetch the provider's view of a mandate"""


def new_request_ref(prefix: str) -> str:
    """Fresh nonce for one provider request; never reused across attempts"""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def encrypt_account_details(account_number: str, bank_code: str, client_secret: str) -> str:
    """
    TripleDES-CBC encryption of "<account>;<bank>" as OnePipe expects it.

    Key is MD5(UTF-16LE(secret)) extended to 24 bytes with its own first
    8 bytes, IV is zero, plaintext is UTF-16LE, output is base64.
    """
    key_hash = hashlib.md5(client_secret.encode("utf-16-le")).digest()
    key = key_hash + key_hash[:8]

    padder = padding.PKCS7(TripleDES.block_size).padder()
    plaintext = padder.update(f"{account_number};{bank_code}".encode("utf-16-le")) + padder.finalize()

    encryptor = Cipher(TripleDES(key), modes.CBC(b"\x00" * 8)).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii")


class OnePipeClient(MandateProviderClient):
    """Client for the OnePipe transact API"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        mock_mode: bool | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.provider_api_url
        self.api_key = api_key if api_key is not None else settings.provider_api_key
        self.client_secret = client_secret if client_secret is not None else settings.provider_client_secret
        self.timeout = settings.http_timeout_seconds if timeout is None else timeout
        self.mock_mode = settings.provider_mock_mode if mock_mode is None else mock_mode
        self.max_retries = settings.provider_max_retries if max_retries is None else max_retries
        self.backoff_base = settings.provider_backoff_base if backoff_base is None else backoff_base
        self.transport = transport

    async def verify_account_ownership(self, bvn: str, account_number: str, bank_code: str) -> AccountOwnership:
        """
        Verify BVN matches account holder (request_type lookup_bvn_min).

        Raises:
            ProviderError: After retries are exhausted or on a rejected request
        """

        def build(request_ref: str) -> Dict[str, Any]:
            return self._envelope(
                request_ref,
                "lookup_bvn_min",
                auth=self._account_auth(account_number, bank_code),
                transaction={
                    "transaction_desc": "BVN Verification",
                    "amount": 0,
                    "customer": {"customer_ref": request_ref, "firstname": "", "surname": "", "email": "", "mobile": ""},
                    "meta": {"a_bank_code": bank_code, "a_account_number": account_number, "a_bvn": bvn},
                    "details": None,
                },
            )

        response = await self._send_with_retry("verify_account_ownership", "BVN", build)
        return onepipe_v2.to_account_ownership(response)

    async def open_mandate_or_invoice(
        self,
        customer,
        account,
        amount: Decimal,
        installments: int,
        order_id: uuid.UUID,
    ) -> OpenedMandate:
        """
        Create a payment mandate or single invoice (request_type send_invoice).

        Not retried: a replay could open a second mandate and double-charge.

        Raises:
            ProviderTimeout: Outcome unknown, reconcile before retrying
            ProviderError: Request definitely failed
        """
        schedule = split_installments(amount, installments)
        start_date, end_date = mandate_window(installments)
        is_recurring = installments > 1
        first_name, _, surname = customer.full_name.partition(" ")

        meta: Dict[str, Any] = {"order_id": str(order_id)}
        if account is not None:
            meta.update({"a_bank_code": account.bank_code, "a_account_number": account.account_number})
        if is_recurring:
            meta.update(
                {
                    "mandate_type": "recurring",
                    "mandate_frequency": "monthly",
                    "mandate_duration": installments,
                    "mandate_start_date": start_date.isoformat(),
                    "mandate_end_date": end_date.isoformat(),
                }
            )
        else:
            meta["payment_type"] = "single_payment"

        def build(request_ref: str) -> Dict[str, Any]:
            return self._envelope(
                request_ref,
                "send_invoice",
                auth=self._account_auth(account.account_number, account.bank_code) if account is not None else None,
                transaction={
                    "transaction_desc": f"Order {order_id} - {installments} month installment",
                    "amount": str(schedule.amount_per_installment),
                    "customer": {
                        "customer_ref": str(customer.id),
                        "firstname": first_name,
                        "surname": surname,
                        "email": customer.email or "",
                        "mobile": customer.phone or "",
                    },
                    "meta": meta,
                    "details": {
                        "description": (
                            f"BNPL Payment - {installments} installments of NGN {schedule.amount_per_installment}"
                        ),
                        "total_amount": str(schedule.total_amount),
                        "installments": installments,
                        "final_installment": str(schedule.final_installment),
                    },
                },
            )

        response = await self._send_once("open_mandate_or_invoice", "INV", build)
        opened = onepipe_v2.to_opened_mandate(response)
        if opened.start_date is None:
            opened.start_date, opened.end_date = start_date, end_date
        return opened

    async def query_mandate_status(self, external_id: str) -> ProviderMandateStatus:
        """Query mandate status (request_type get_mandate_status)"""

        def build(request_ref: str) -> Dict[str, Any]:
            return self._envelope(
                request_ref,
                "get_mandate_status",
                auth=None,
                transaction={"meta": {"mandate_id": external_id}},
            )

        response = await self._send_with_retry("query_mandate_status", "STATUS", build)
        return onepipe_v2.to_mandate_status(response)

    def _account_auth(self, account_number: str, bank_code: str) -> Dict[str, Any]:
        return {
            "type": "bank.account",
            "secure": encrypt_account_details(account_number, bank_code, self.client_secret),
            "auth_provider": "paywithaccount",
        }

    def _envelope(
        self,
        request_ref: str,
        request_type: str,
        auth: Optional[Dict[str, Any]],
        transaction: Dict[str, Any],
    ) -> Dict[str, Any]:
        return {
            "request_ref": request_ref,
            "request_type": request_type,
            "auth": auth or {"type": None, "secure": None, "auth_provider": "paywithaccount"},
            "transaction": {
                "mock_mode": "inspect" if self.mock_mode else "live",
                "transaction_ref": request_ref,
                "transaction_ref_parent": None,
                **transaction,
            },
        }

    async def _post(self, operation: str, request_ref: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Signature": provider_request_signature(request_ref, self.client_secret),
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            with provider_latency_histogram.labels(operation=operation).time():
                response = await client.post(self.base_url, json=payload, headers=headers)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as e:
                raise ProviderError(f"Invalid JSON from provider: {e}") from e

    async def _send_once(
        self,
        operation: str,
        prefix: str,
        build: Callable[[str], Dict[str, Any]],
    ) -> Dict[str, Any]:
        request_ref = new_request_ref(prefix)
        try:
            return await self._post(operation, request_ref, build(request_ref))
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            # Never reached the provider, so nothing was created
            provider_failure_counter.labels(operation=operation).inc()
            raise ProviderError(f"Provider unreachable: {e}") from e
        except httpx.HTTPStatusError as e:
            provider_failure_counter.labels(operation=operation).inc()
            if e.response.status_code < 500:
                raise ProviderError(f"Provider API error: {e.response.status_code}") from e
            # A gateway 5xx may sit in front of a request the provider applied
            logger.error(
                f"Provider {operation} outcome unknown after {e.response.status_code}",
                extra={"request_ref": request_ref, "operation": operation},
            )
            raise ProviderTimeout(
                f"Provider returned {e.response.status_code}; reconcile reference {request_ref} before retrying",
                reference=request_ref,
            ) from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            provider_failure_counter.labels(operation=operation).inc()
            logger.error(
                f"Provider {operation} outcome unknown",
                extra={"request_ref": request_ref, "operation": operation},
            )
            raise ProviderTimeout(
                f"Provider timeout after {self.timeout}s; reconcile reference {request_ref} before retrying",
                reference=request_ref,
            ) from e

    async def _send_with_retry(
        self,
        operation: str,
        prefix: str,
        build: Callable[[str], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Send a read-only request with exponential backoff.

        Retries on 5xx errors and network failures, each attempt with a new
        request_ref. 4xx responses fail immediately.
        """
        attempt = 0
        while True:
            request_ref = new_request_ref(prefix)
            try:
                return await self._post(operation, request_ref, build(request_ref))
            except httpx.HTTPStatusError as e:
                provider_failure_counter.labels(operation=operation).inc()
                if e.response.status_code < 500:
                    raise ProviderError(f"Provider API error: {e.response.status_code}") from e
                error: Exception = e
            except httpx.RequestError as e:
                provider_failure_counter.labels(operation=operation).inc()
                error = e

            attempt += 1
            if attempt >= self.max_retries:
                raise ProviderError(f"Provider {operation} failed after {attempt} attempts: {error}") from error

            # Exponential backoff: base, 2*base, 4*base, ...
            await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))


def build_provider_client(mode: str | None = None) -> MandateProviderClient:
    """Select the provider strategy once, at composition time"""
    mode = mode or settings.provider_mode
    if mode == "fake":
        from bnpl_gateway.infrastructure.clients.fake_provider import FakeMandateProvider

        return FakeMandateProvider()
    return OnePipeClient()
