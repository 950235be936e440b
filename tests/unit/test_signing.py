"""Unit tests for webhook and provider request signatures"""

import hashlib
import hmac
from bnpl_gateway.utils.signing import (
    compute_webhook_signature,
    provider_request_signature,
    verify_webhook_signature,
)

BODY = b'{"mandate_id":"MND-1","status":"success"}'


def test_valid_signature_accepted():
    signature = hmac.new(b"secret", BODY, hashlib.sha256).hexdigest()
    assert verify_webhook_signature(BODY, signature, "secret")


def test_uppercase_signature_accepted():
    assert verify_webhook_signature(BODY, compute_webhook_signature(BODY, "secret").upper(), "secret")


def test_signature_over_different_bytes_rejected():
    """Re-serialized JSON is not the body that was signed"""
    signature = compute_webhook_signature(BODY, "secret")
    assert not verify_webhook_signature(BODY.replace(b":", b": "), signature, "secret")


def test_wrong_secret_rejected():
    assert not verify_webhook_signature(BODY, compute_webhook_signature(BODY, "other"), "secret")


def test_missing_signature_or_secret_rejected():
    assert not verify_webhook_signature(BODY, None, "secret")
    assert not verify_webhook_signature(BODY, "", "secret")
    assert not verify_webhook_signature(BODY, compute_webhook_signature(BODY, ""), "")


def test_provider_request_signature_is_md5_of_ref_and_secret():
    expected = hashlib.md5(b"REF_1;client-secret").hexdigest()
    assert provider_request_signature("REF_1", "client-secret") == expected
