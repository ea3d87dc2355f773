"""Exception handlers producing the uniform error envelope."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.errors import AppError
from src.models.response import ApiErrorResponse

logger = structlog.get_logger(__name__)


def error_response(status_code: int, message: str, errors: list | None = None) -> JSONResponse:
    """Build a JSONResponse carrying the error envelope."""
    envelope = ApiErrorResponse(status_code=status_code, message=message, errors=errors or [])
    return JSONResponse(status_code=status_code, content=envelope.to_content())


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers so no raw exception detail reaches the client."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "app_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            message=exc.message,
        )
        return error_response(exc.status_code, exc.message, exc.errors)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", ["unknown"])),
                "message": error.get("msg", "Validation failed"),
            }
            for error in exc.errors()
        ]
        message = (
            f"Field '{errors[0]['field']}': {errors[0]['message']}"
            if errors
            else "Request validation failed"
        )
        logger.warning(
            "validation_error",
            path=request.url.path,
            method=request.method,
            detail=message,
        )
        return error_response(400, message, errors)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return error_response(500, "Internal server error")
