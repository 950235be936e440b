"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    category = "internal_error"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(DomainException):
    """Caller input is invalid; nothing was changed"""

    category = "validation_error"
    http_status = 400


class Unauthorized(DomainException):
    """Webhook signature or caller identity could not be authenticated"""

    category = "unauthorized"
    http_status = 401


class Forbidden(DomainException):
    """Caller does not own the resource or lacks the required role"""

    category = "forbidden"
    http_status = 403


class NotFound(DomainException):
    """Referenced entity does not exist"""

    category = "not_found"
    http_status = 404


class InsufficientStock(DomainException):
    """Requested quantity exceeds available stock"""

    category = "insufficient_stock"
    http_status = 409


class InvalidTransition(DomainException):
    """Lifecycle state change is not allowed"""

    category = "invalid_transition"
    http_status = 409


class MalformedPayload(DomainException):
    """Inbound webhook body could not be parsed"""

    category = "malformed_payload"
    http_status = 400


class ProviderError(DomainException):
    """Mandate provider returned an error or is unavailable"""

    category = "provider_error"
    http_status = 502
    requires_reconciliation = False


class ProviderTimeout(ProviderError):
    """
    Provider call timed out, so its outcome is unknown.

    The request may have been applied on the provider side. Query the mandate
    status before trying again; never replay it as a new request.
    """

    category = "provider_timeout"
    http_status = 504
    requires_reconciliation = True

    def __init__(self, message: str = "", reference: str | None = None):
        super().__init__(message)
        self.reference = reference
