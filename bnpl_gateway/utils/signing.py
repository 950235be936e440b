"""Request signing and webhook signature verification"""

import hashlib
import hmac


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest over the exact request body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of an inbound webhook signature; an unset secret rejects everything"""
    if not signature or not secret:
        return False
    expected = compute_webhook_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def provider_request_signature(request_ref: str, client_secret: str) -> str:
    """OnePipe per-request signature: md5("<request_ref>;<client_secret>")"""
    return hashlib.md5(f"{request_ref};{client_secret}".encode("utf-8")).hexdigest()
