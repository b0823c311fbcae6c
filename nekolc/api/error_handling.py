from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from nekolc.api.schemas import Envelope, ErrorBody
from nekolc.logging import get_correlation_id, get_logger
from nekolc.service.errors import ServiceError

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "invalid_request",
    401: "unauthorized",
    500: "internal_error",
    501: "not_implemented",
}


def _error_code_for_status(status_code: int) -> str:
    if status_code >= 500:
        return _STATUS_TO_CODE.get(status_code, "internal_error")
    return _STATUS_TO_CODE.get(status_code, "invalid_request")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details or None)
    envelope = Envelope(status="error", error=error_body)
    correlation_id = get_correlation_id()
    if correlation_id:
        envelope.request_id = correlation_id
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Render service, validation and unexpected errors in the error envelope."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(
            exc.status_code, exc.message, exc.detail, code=exc.error_code
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Only field locations go back to the client; input values may hold secrets
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            fields=fields,
        )
        return _error_response(
            400, "Invalid request body", {"fields": fields}, code="invalid_request"
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        else:
            logger.warning(
                "http_client_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "internal server error", code="internal_error")
