"""Global error handlers: consistent JSON error responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from edugame.errors import (
    GamificationError,
    InsufficientBalance,
    InvalidAmount,
    InvalidChallenge,
    InvalidLeaderboard,
    NotFound,
    TransientStoreFailure,
)

logger = structlog.get_logger()

# Checked in order; the first matching class wins.
_STATUS_BY_ERROR: list[tuple[type[GamificationError], int]] = [
    (InvalidAmount, 400),
    (InvalidChallenge, 400),
    (InvalidLeaderboard, 400),
    (InsufficientBalance, 409),
    (NotFound, 404),
    (TransientStoreFailure, 503),
]


def status_for(exc: GamificationError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(GamificationError)
    async def gamification_exception_handler(request: Request, exc: GamificationError) -> JSONResponse:
        """Map domain errors onto HTTP status codes."""
        status = status_for(exc)
        if status >= 500:
            logger.warning("gamification_error", path=request.url.path, error=str(exc), kind=type(exc).__name__)
            detail = "Service temporarily unavailable" if status == 503 else "Internal server error"
        else:
            detail = str(exc)
        content: dict[str, object] = {"detail": detail}
        if isinstance(exc, InsufficientBalance):
            content["available"] = exc.available
            content["requested"] = exc.requested
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
