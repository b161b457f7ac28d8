"""
CSRF Middleware Module - Black Box Interface

Purpose: Enforce double-submit CSRF tokens on cookie-authenticated writes
Interface: CsrfMiddleware, create_csrf_middleware()
Hidden: Session lookup, header/cookie extraction, error formatting

Requests authenticated with X-API-Key carry no ambient credentials and are
exempt, as are requests without a usable session cookie.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from ..security import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, CsrfGuard
from ..session import SESSION_COOKIE_NAME, SessionClaims

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}

SessionValidator = Callable[[str], Awaitable[Optional[SessionClaims]]]


class CsrfMiddleware:
    """
    CSRF enforcement for FastAPI applications.

    Only state-changing methods are checked, and only when the request
    presents a session cookie that validates; anything else is left to
    the session guard to reject.
    """

    def __init__(
        self,
        session_validator: SessionValidator,
        csrf_guard: CsrfGuard,
        skip_paths: Optional[Dict[str, list]] = None,
        api_key_header: str = "X-API-Key",
    ):
        """
        Initialize CSRF middleware.

        Args:
            session_validator: Async function returning SessionClaims or None for a token
            csrf_guard: Token signer/verifier
            skip_paths: Dict of {path: [methods]} exempt from the check
            api_key_header: Header whose presence marks a non-browser client
        """
        self.session_validator = session_validator
        self.csrf_guard = csrf_guard
        self.skip_paths = skip_paths or {}
        self.api_key_header = api_key_header

    def should_skip(self, request: Request) -> bool:
        """Check if CSRF enforcement should be skipped for this request."""
        method = request.method.upper()
        if method in SAFE_METHODS:
            return True

        if request.headers.get(self.api_key_header):
            return True

        path = str(request.url.path)
        if path in self.skip_paths:
            allowed_methods = self.skip_paths[path]
            if "*" in allowed_methods or method in allowed_methods:
                return True

        return False

    def format_error(self, message: str) -> Dict[str, Any]:
        return {"error": "csrf_failed", "message": message, "status": 403}

    async def __call__(self, request: Request, call_next):
        """Process the request through CSRF middleware."""
        if self.should_skip(request):
            return await call_next(request)

        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            return await call_next(request)

        claims = await self.session_validator(token)
        if claims is None:
            return await call_next(request)

        cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
        header_token = request.headers.get(CSRF_HEADER_NAME)
        if not self.csrf_guard.validate(cookie_token, header_token, claims.session_id):
            logger.warning(
                f"CSRF check failed for {request.method} {request.url.path} "
                f"(account {claims.account_id})"
            )
            return JSONResponse(
                status_code=403,
                content=self.format_error("Invalid or missing CSRF token"),
            )

        return await call_next(request)


def create_csrf_middleware(
    session_validator: SessionValidator,
    csrf_guard: CsrfGuard,
    skip_paths: Optional[Dict[str, list]] = None,
) -> CsrfMiddleware:
    """
    Factory function to create CSRF middleware.

    Args:
        session_validator: Async callable resolving a session token to claims
        csrf_guard: CsrfGuard built from the CSRF secret
        skip_paths: Paths to skip enforcement {"/path": ["POST"]}

    Returns:
        Configured CsrfMiddleware instance
    """
    return CsrfMiddleware(
        session_validator=session_validator,
        csrf_guard=csrf_guard,
        skip_paths=skip_paths,
    )


# Module interface - what this module provides
__all__ = ["CsrfMiddleware", "SAFE_METHODS", "create_csrf_middleware"]
