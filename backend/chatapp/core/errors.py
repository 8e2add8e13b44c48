"""
Error taxonomy for the chat core.

Services raise these; the HTTP boundary turns them into status codes in one
place (see ``install_error_handlers``).
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(ChatError):
    status_code = 400
    default_detail = "Invalid request"


class AuthError(ChatError):
    status_code = 401
    default_detail = "Invalid credentials"


class Forbidden(ChatError):
    status_code = 403
    default_detail = "Forbidden"


class NotFound(ChatError):
    status_code = 404
    default_detail = "Not found"


class LimitExceeded(ChatError):
    status_code = 400
    default_detail = "Limit exceeded"


class TooManyAttempts(LimitExceeded):
    status_code = 429
    default_detail = "Too many attempts"

    def __init__(self, detail: str | None = None, retry_after: float = 0.0):
        super().__init__(detail)
        self.retry_after = retry_after


class InternalError(ChatError):
    status_code = 500


async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    headers = None
    if isinstance(exc, TooManyAttempts) and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, _chat_error_handler)
