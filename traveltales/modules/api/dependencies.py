"""
FastAPI dependencies shared by the routers.

Modules are created in the application lifespan and published on
``app.state.services``; dependencies only read from there.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Depends, Request, Response

from ...clock import Clock
from ...errors import Forbidden, TooManyRequests, Unauthorized
from ..accounts import AccountStore
from ..apikeys import ApiKeyManager
from ..auth import API_KEY_HEADER, GuardResult, GuardStatus, Principal, PrincipalKind, SessionGuard
from ..countries import CountryProvider
from ..mail import MailService
from ..security import CsrfGuard, RateLimiter
from ..session import SessionModule
from ..storage import digest
from ..tokens import TokenService
from .audit import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler may call into."""

    config: Any
    redis: Any
    clock: Clock
    accounts: AccountStore
    tokens: TokenService
    sessions: SessionModule
    apikeys: ApiKeyManager
    guard: SessionGuard
    limiter: RateLimiter
    csrf: CsrfGuard
    mail: MailService
    countries: CountryProvider
    audit: AuditLog


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def resolve_principal(
    request: Request, services: Services = Depends(get_services)
) -> GuardResult:
    """Run the session guard once per request."""
    cached = getattr(request.state, "guard_result", None)
    if cached is not None:
        return cached
    result = await services.guard.resolve(request)
    request.state.guard_result = result
    return result


def _unauthorized(result: GuardResult) -> Unauthorized:
    if result.status == GuardStatus.ANONYMOUS:
        return Unauthorized("Authentication required", reason="authentication_required")
    return Unauthorized("Invalid or expired credentials", reason=result.reason)


async def require_session(result: GuardResult = Depends(resolve_principal)) -> Principal:
    """
    Require a cookie session.

    Raises:
        Unauthorized: No credentials, or unusable credentials
        Forbidden: The caller authenticated with an API key
    """
    if not result.authenticated:
        raise _unauthorized(result)
    if result.principal.kind != PrincipalKind.SESSION:
        raise Forbidden("API keys cannot perform account operations", reason="session_required")
    return result.principal


async def require_admin(principal: Principal = Depends(require_session)) -> Principal:
    if not principal.is_admin:
        raise Forbidden("Admin access required", reason="admin_required")
    return principal


async def require_api_key(
    request: Request, result: GuardResult = Depends(resolve_principal)
) -> Principal:
    if not request.headers.get(API_KEY_HEADER):
        raise Unauthorized("API key required", reason="api_key_required")
    if not result.authenticated:
        raise _unauthorized(result)
    return result.principal


async def optional_session(result: GuardResult = Depends(resolve_principal)) -> Optional[Principal]:
    if result.authenticated and result.principal.kind == PrincipalKind.SESSION:
        return result.principal
    return None


def rate_limit(policy_name: str, by_api_key: bool = False) -> Callable:
    """
    Create a dependency that counts the request against a limiter policy.

    Args:
        policy_name: Policy registered on the RateLimiter
        by_api_key: Key the window by the presented X-API-Key digest instead of client IP

    Raises:
        TooManyRequests: When the window is full (carries RateLimit-* headers)
    """

    async def dependency(
        request: Request,
        response: Response,
        services: Services = Depends(get_services),
    ) -> None:
        presented_key = request.headers.get(API_KEY_HEADER) if by_api_key else None
        identity = f"key:{digest(presented_key)}" if presented_key else f"ip:{client_ip(request)}"

        status = await services.limiter.hit(policy_name, identity)
        if not status.allowed:
            await services.audit.record(
                "rate_limit_exceeded", ip=client_ip(request), policy=policy_name, path=request.url.path
            )
            raise TooManyRequests(
                "Too many requests, please try again later.",
                retry_after=status.retry_after,
                reset_at=status.reset_at,
                reason="rate_limited",
                limit=status.limit,
            )
        response.headers.update(status.headers())

    return dependency
