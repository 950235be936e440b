"""
Translation of OnePipe v2 "transact" responses into domain objects.

Pure functions only: no I/O and no settings. When the provider changes its
response schema, add a new module next to this one instead of editing
lifecycle code.
"""

from datetime import date
from typing import Any, Dict, Mapping, Optional

from bnpl_gateway.domain.exceptions import ProviderError
from bnpl_gateway.domain.models import AccountOwnership, OpenedMandate, ProviderMandateStatus

TRANSLATION_VERSION = "v2"

# Envelope statuses that mean the request was accepted
ACCEPTED_STATUSES = {"successful", "pending", "waitingforotp", "pendingvalidation", "processing"}

MANDATE_STATUS_MAP = {
    "active": ProviderMandateStatus.ACTIVE,
    "activated": ProviderMandateStatus.ACTIVE,
    "successful": ProviderMandateStatus.ACTIVE,
    "pending": ProviderMandateStatus.PENDING,
    "pending_auth": ProviderMandateStatus.PENDING,
    "awaiting_authorization": ProviderMandateStatus.PENDING,
    "completed": ProviderMandateStatus.COMPLETED,
    "failed": ProviderMandateStatus.FAILED,
    "cancelled": ProviderMandateStatus.CANCELLED,
    "canceled": ProviderMandateStatus.CANCELLED,
}


def unwrap(response: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate the response envelope and return the innermost payload.

    OnePipe nests provider data as data.provider_response; older sandboxes
    return fields directly under data or at top level. Lookups fall through
    all three layers, innermost first.

    Raises:
        ProviderError: If the envelope reports a failure or is not an object
    """
    if not isinstance(response, Mapping):
        raise ProviderError("Provider response is not a JSON object")

    status = str(response.get("status", "")).replace(" ", "").lower()
    if status and status not in ACCEPTED_STATUSES:
        message = response.get("message") or "Provider rejected the request"
        raise ProviderError(f"Provider error: {message}")

    data = response.get("data") or {}
    if not isinstance(data, Mapping):
        data = {}
    inner = data.get("provider_response") or {}
    if not isinstance(inner, Mapping):
        inner = {}

    # Envelope status/message describe the request, not the mandate
    merged: Dict[str, Any] = {k: v for k, v in response.items() if k not in ("data", "status", "message")}
    merged.update({k: v for k, v in data.items() if k != "provider_response"})
    merged.update(inner)
    return merged


def _first(payload: Mapping[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def to_account_ownership(response: Mapping[str, Any]) -> AccountOwnership:
    """Map a lookup_bvn_min response"""
    payload = unwrap(response)
    linked = payload.get("bvn_linked")
    if isinstance(linked, str):
        linked = linked.strip().lower() in ("true", "yes", "1")
    return AccountOwnership(
        linked=bool(linked),
        account_name=_first(payload, "account_name", "accountName"),
    )


def to_opened_mandate(response: Mapping[str, Any]) -> OpenedMandate:
    """
    Map a send_invoice response.

    Raises:
        ProviderError: If no mandate/invoice identifier came back
    """
    payload = unwrap(response)
    external_id = _first(payload, "mandate_id", "mandate_reference", "reference", "transaction_ref")
    if external_id is None:
        raise ProviderError("Provider response is missing a mandate reference")

    return OpenedMandate(
        external_id=str(external_id),
        virtual_account=_first(payload, "virtual_account", "virtual_account_number", "account_number"),
        start_date=_parse_date(_first(payload, "start_date", "mandate_start_date")),
        end_date=_parse_date(_first(payload, "end_date", "mandate_end_date")),
    )


def to_mandate_status(response: Mapping[str, Any]) -> ProviderMandateStatus:
    """Map a get_mandate_status response; unrecognised values become UNKNOWN"""
    payload = unwrap(response)
    raw = _first(payload, "mandate_status", "status")
    if raw is None:
        return ProviderMandateStatus.UNKNOWN
    return MANDATE_STATUS_MAP.get(str(raw).strip().lower(), ProviderMandateStatus.UNKNOWN)
