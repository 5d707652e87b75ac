"""Global error handlers.

Leaderboard rejections render as {"ok": false, "error": <reason>} so clients
can branch on a stable code; everything else keeps the {"detail": ...} shape.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from noorboard.leaderboard.service import LeaderboardError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(LeaderboardError)
    async def leaderboard_error_handler(request: Request, exc: LeaderboardError) -> JSONResponse:
        logger.info(
            "leaderboard_rejected",
            path=request.url.path,
            method=request.method,
            reason=exc.reason,
            status=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.reason},
        )

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
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
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
