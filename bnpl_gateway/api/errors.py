"""Exception handlers rendering every failure as {"error": {"category", "message"}}"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bnpl_gateway.api.dependencies import get_request_id
from bnpl_gateway.domain.exceptions import DomainException, ProviderTimeout

logger = logging.getLogger(__name__)

_HTTP_CATEGORIES = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
}


def error_response(status_code: int, category: str, message: str, **fields) -> JSONResponse:
    body = {"category": category, "message": message}
    body.update({k: v for k, v in fields.items() if v is not None})
    return JSONResponse(status_code=status_code, content={"error": body})


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain errors, request validation and HTTP errors"""

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        request_id = get_request_id(request)
        log = logger.error if exc.http_status >= 500 else logger.warning
        log(
            f"{exc.category}: {exc.message}",
            extra={"request_id": request_id, "path": request.url.path},
        )

        if isinstance(exc, ProviderTimeout):
            return error_response(
                exc.http_status,
                exc.category,
                exc.message,
                requires_reconciliation=True,
                reference=exc.reference,
            )
        return error_response(exc.http_status, exc.category, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        logger.warning(
            f"Validation error: {len(errors)} field(s) failed",
            extra={"request_id": get_request_id(request), "path": request.url.path},
        )
        return error_response(400, "validation_error", "; ".join(errors))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        category = _HTTP_CATEGORIES.get(exc.status_code, "internal_error")
        return error_response(exc.status_code, category, str(exc.detail) if exc.detail else "An error occurred")
