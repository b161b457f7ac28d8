#!/usr/bin/env python3
"""
TravelTales - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Runs the API server

All business logic is in the modules, following black box principles.
"""

import logging
import logging.config as log_config
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from traveltales import __version__
from traveltales.clock import Clock, utc_now
from traveltales.errors import TooManyRequests, TravelTalesError
from traveltales.logging_config import get_logging_config

# Import modules through their black box interfaces
from traveltales.modules.accounts import AccountStore
from traveltales.modules.api import (
    AuditLog,
    Services,
    create_admin_router,
    create_auth_router,
    create_country_router,
)
from traveltales.modules.apikeys import ApiKeyManager
from traveltales.modules.auth import SessionGuard
from traveltales.modules.config import ConfigModule, get_config
from traveltales.modules.countries import CountryProvider
from traveltales.modules.mail import Mailer, MailService, OutboxMailer
from traveltales.modules.middleware import create_csrf_middleware
from traveltales.modules.security import CsrfGuard, RateLimiter, RateLimitPolicy
from traveltales.modules.session import SessionModule
from traveltales.modules.storage import StorageModule
from traveltales.modules.tokens import TokenPurpose, TokenService

logger = logging.getLogger(__name__)

RedisFactory = Callable[[], Awaitable[redis.Redis]]

# Unauthenticated entry points; there is no session to forge requests for
CSRF_SKIP_PATHS = {
    "/auth/register": ["POST"],
    "/auth/login": ["POST"],
    "/auth/admin/login": ["POST"],
    "/auth/forgot-password": ["POST"],
    "/auth/reset-password": ["POST"],
}


def build_services(
    config: ConfigModule,
    redis_client: redis.Redis,
    csrf_guard: CsrfGuard,
    clock: Clock,
    mailer: Optional[Mailer] = None,
) -> Services:
    """Wire every module against one Redis client."""
    accounts = AccountStore(redis_client, bcrypt_rounds=config.get("bcrypt_rounds"), clock=clock)
    tokens = TokenService(
        redis_client,
        ttls={
            TokenPurpose.EMAIL_VERIFICATION: config.get("verification_token_ttl"),
            TokenPurpose.PASSWORD_RESET: config.get("reset_token_ttl"),
            TokenPurpose.PASSWORD_CHANGE: config.get("change_token_ttl"),
            TokenPurpose.EMAIL_CHANGE: config.get("change_token_ttl"),
        },
        clock=clock,
    )
    sessions = SessionModule(redis_client, config.get("jwt_secret"), default_ttl=config.get("session_ttl"))
    apikeys = ApiKeyManager(redis_client, cooldown_seconds=config.get("api_key_cooldown"), clock=clock)

    window = config.get("rate_limit_window")
    limiter = RateLimiter(
        redis_client,
        policies={
            "api_key": RateLimitPolicy("api_key", config.get("rate_limit_api_key"), window),
            "api_ip": RateLimitPolicy("api_ip", config.get("rate_limit_api_ip"), window),
            "auth": RateLimitPolicy("auth", config.get("rate_limit_auth"), window),
            "general": RateLimitPolicy("general", config.get("rate_limit_general"), window),
        },
        clock=clock,
    )

    # Account deletion cascades to keys and outstanding tokens
    accounts.add_cascade(apikeys.delete_all)
    accounts.add_cascade(tokens.revoke_all)

    return Services(
        config=config,
        redis=redis_client,
        clock=clock,
        accounts=accounts,
        tokens=tokens,
        sessions=sessions,
        apikeys=apikeys,
        guard=SessionGuard(sessions, accounts, apikeys),
        limiter=limiter,
        csrf=csrf_guard,
        mail=MailService(
            mailer or OutboxMailer(redis_client, clock=clock),
            frontend_url=config.get("frontend_url"),
            sender=config.get("mail_sender"),
        ),
        countries=CountryProvider(
            base_url=config.get("countries_api_url"), use_mock=config.get("use_mock_data")
        ),
        audit=AuditLog(redis_client, clock=clock),
    )


def _error_response(status_code: int, reason: str, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": reason, "message": message, "status": status_code},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as {"error", "message", "status"} without internals."""

    @app.exception_handler(TravelTalesError)
    async def traveltales_error_handler(request: Request, exc: TravelTalesError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.reason}")
        headers = exc.headers() if isinstance(exc, TooManyRequests) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())[1:])
            problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        logger.info(f"Validation error on {request.url.path}: {problems}")
        return _error_response(400, "validation_error", "; ".join(problems) or "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        reason = "not_found" if exc.status_code == 404 else "http_error"
        return _error_response(exc.status_code, reason, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(redis.ConnectionError)
    async def redis_error_handler(request: Request, exc: redis.ConnectionError):
        """Handle Redis connection errors."""
        logger.error(f"Redis connection error: {exc}")
        return _error_response(503, "store_unavailable", "Database connection failed")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error_response(500, "internal_error", "An unexpected error occurred")


def create_app(
    config: Optional[ConfigModule] = None,
    redis_factory: Optional[RedisFactory] = None,
    clock: Optional[Clock] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    """
    Build the TravelTales application.

    Args:
        config: Configuration (defaults to the environment)
        redis_factory: Async callable returning a Redis client (defaults to StorageModule)
        clock: Time source for expiries, cooldowns and rate windows
        mailer: Outbound mail transport (defaults to the Redis outbox)

    Returns:
        FastAPI application; modules are created when its lifespan starts
    """
    config = config or get_config()
    clock = clock or utc_now
    csrf_guard = CsrfGuard(config.get("csrf_secret"))
    storage = StorageModule(
        host=config.get("redis_host"),
        port=config.get("redis_port"),
        db=config.get("redis_db"),
        password=config.get("redis_password"),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle - initialize and cleanup resources.
        """
        # Startup
        logger.info("Starting TravelTales API...")

        # Initialize Redis connection; nothing works without the store
        try:
            if redis_factory:
                redis_client = await redis_factory()
                await redis_client.ping()
            else:
                redis_client = await storage.connect()
        except (redis.ConnectionError, OSError) as e:
            logger.critical(f"Credential store unreachable at startup: {e}")
            raise SystemExit(1) from e

        services = build_services(config, redis_client, csrf_guard, clock, mailer)
        admin = await services.accounts.ensure_admin(
            config.get("admin_username"), config.get("admin_email"), config.get("admin_password")
        )
        logger.info(f"Administrator account ready (id {admin.id})")
        app.state.services = services

        logger.info("TravelTales API started successfully")

        yield

        # Shutdown
        logger.info("Shutting down TravelTales API...")
        if redis_factory:
            await redis_client.aclose()
        else:
            await storage.disconnect()
        logger.info("TravelTales API shutdown complete")

    # Create FastAPI application
    app = FastAPI(
        title="TravelTales API",
        description="TravelTales - accounts, sessions and API keys",
        version=__version__,
        lifespan=lifespan,
    )

    async def validate_session(token: str):
        return await app.state.services.sessions.validate_session(token)

    app.middleware("http")(create_csrf_middleware(validate_session, csrf_guard, CSRF_SKIP_PATHS))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.get("frontend_url")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-CSRF-Token", "X-API-Key"],
    )

    register_exception_handlers(app)
    app.include_router(create_auth_router())
    app.include_router(create_admin_router())
    app.include_router(create_country_router())

    # Health/Monitoring Endpoints

    @app.get("/healthz")
    async def healthz():
        """
        Minimal health check endpoint for readiness/liveness probes.

        Returns:
            200: Service is running
        """
        return {"status": "ok"}

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check including the credential store.

        Returns:
            200: Service healthy
            503: Service unhealthy
        """
        environment = config.get("environment", "development")
        try:
            await request.app.state.services.redis.ping()
        except (redis.ConnectionError, OSError) as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "redis": "disconnected", "environment": environment},
            )
        return {
            "status": "healthy",
            "redis": "connected",
            "environment": environment,
            "version": __version__,
        }

    return app


def main() -> None:
    config = get_config()
    log_config.dictConfig(get_logging_config(config.get("log_level")))
    uvicorn.run(
        "traveltales.main:create_app",
        factory=True,
        host=config.get("host"),
        port=config.get("port"),
        log_level=config.get("log_level").lower(),
        reload=config.get("debug"),
        log_config=get_logging_config(config.get("log_level")),
    )


if __name__ == "__main__":
    main()
