"""HTTP-facing error taxonomy and the handlers that render it.

Every error leaves the API as ``{"error": "<message>"}``; tracebacks and
internal identifiers stay in the logs.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class NotifyError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(NotifyError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class Unauthenticated(NotifyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(NotifyError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(NotifyError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InternalAuthError(NotifyError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Authentication error"


class ServiceUnavailable(NotifyError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service unavailable"


def setup_exception_handlers(app: FastAPI) -> None:
    """Register JSON renderers for NotifyError and unexpected exceptions."""

    @app.exception_handler(NotifyError)
    async def notify_error_handler(request: Request, exc: NotifyError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation failed", "details": details},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
