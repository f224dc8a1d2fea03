from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.features.audit.exceptions import AuditError
from app.platform.logger import get_logger
from app.platform.response import api_response, error_response

logger = get_logger(__name__)


def add_exception_handlers(app):
    @app.exception_handler(AuditError)
    async def audit_exception_handler(request: Request, exc: AuditError):
        extra = {"limits": exc.limits} if exc.limits is not None else None
        return error_response(
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.status_code,
            reason=exc.reason,
            extra=extra,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return error_response(
            error_code="SERVER_ERROR",
            message="Analysis failed. Try again.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            reason=str(exc) or type(exc).__name__,
        )
