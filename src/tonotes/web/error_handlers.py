from typing import Any

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from tonotes.errors import InternalError, InvalidInputError, RateLimitedError, ServiceError, UserError

logger = structlog.get_logger(__name__)


def create_json_error_response(status_code: int, message: str, error_type: str, **extra: Any) -> JSONResponse:
    """Create JSON error response with a type for machine parsing."""
    content: dict[str, Any] = {"error": message, "type": error_type, **extra}
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses; status and type come from the error class."""
    if not isinstance(exc, UserError):
        return await general_exception_handler(_, exc)

    extra: dict[str, Any] = {}
    if isinstance(exc, RateLimitedError):
        extra["next_allowed_change"] = exc.next_allowed_change.isoformat()
    return create_json_error_response(exc.status_code, str(exc), exc.kind, **extra)


async def validation_error_handler(_: Request, exc: Exception) -> Response:
    """Report malformed request bodies in the same shape as other input errors."""
    message = "Invalid request"
    if isinstance(exc, RequestValidationError) and exc.errors():
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else str(first.get("msg", message))
    return create_json_error_response(InvalidInputError.status_code, message, InvalidInputError.kind)


async def service_error_handler(request: Request, exc: Exception) -> Response:
    """Log server-side failures with context; the client only sees a generic error."""
    kind = exc.kind if isinstance(exc, ServiceError) else InternalError.kind
    logger.error("service_error", kind=kind, error=str(exc), method=request.method, path=request.url.path)
    return create_json_error_response(500, "Internal server error", InternalError.kind)


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("unexpected_error", error=str(exc))
    return create_json_error_response(500, "An unexpected error occurred.", InternalError.kind)
