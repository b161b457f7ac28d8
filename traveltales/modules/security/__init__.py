"""
Security Module - Black Box Interface

Purpose: Request throttling and cross-site request forgery defence
Interface: RateLimiter.hit(), RateLimitPolicy, CsrfGuard.mint(), CsrfGuard.validate()
Hidden: Sliding-window bookkeeping, token signing scheme

The limiter keeps its state in Redis; CSRF tokens are stateless and bound
to the session they were minted for.
"""

from .csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, CsrfGuard
from .rate_limit import RateLimiter, RateLimitPolicy, RateLimitStatus

__all__ = [
    "CSRF_COOKIE_NAME",
    "CSRF_HEADER_NAME",
    "CsrfGuard",
    "RateLimitPolicy",
    "RateLimitStatus",
    "RateLimiter",
]
