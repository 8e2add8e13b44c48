"""
CSRF middleware for FastAPI.
Validates CSRF tokens for state-changing requests (POST, PUT, PATCH, DELETE).
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chatapp.security.csrf import CSRF_COOKIE, CSRF_HEADER, CSRFTokenManager, tokens_match

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")

# entry points that run before a session (and its token) exists
EXEMPT_PATHS = frozenset({
    "/auth/signup",
    "/auth/login",
    "/auth/verify-otp",
    "/auth/refresh-token",
})


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Double-submit check: the x-csrf-token header must equal the csrfToken
    cookie and carry a valid signature. The match against the token stored on
    the session is done by the ``require_csrf`` route dependency.
    """

    def __init__(self, app, manager: CSRFTokenManager):
        super().__init__(app)
        self.manager = manager

    async def dispatch(self, request: Request, call_next):
        if request.method in SAFE_METHODS or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        header_token = request.headers.get(CSRF_HEADER)
        if not header_token:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Forbidden - CSRF token missing"},
            )

        cookie_token = request.cookies.get(CSRF_COOKIE)
        if not tokens_match(header_token, cookie_token) or not self.manager.verify_token(header_token):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Forbidden - Invalid CSRF token"},
            )

        return await call_next(request)
