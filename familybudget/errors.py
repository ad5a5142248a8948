from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base for every failure the API reports on purpose.
    The message is safe to show to the caller.
    """

    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    # 400 rather than 409: clients already branch on 400 for signup/invite
    status_code = 400
    default_message = "Already exists"


class AuthError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidTokenError(AppError):
    status_code = 400
    default_message = "Invalid token"


class TokenExpiredError(AppError):
    status_code = 400
    default_message = "Token expired"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"


class DispatchError(InternalError):
    default_message = "Failed to send email"


def register_error_handlers(app: FastAPI) -> None:
    """
    Map failures to the {"detail": ...} envelope.
    Unexpected exceptions are logged here and never echoed to the client.
    """

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
