import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional, Tuple

import jwt

from ...clock import utc_now

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "auth_token"
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "traveltales"


@dataclass
class SessionClaims:
    """Verified contents of a session token."""

    session_id: str
    account_id: int
    username: str
    role: str
    epoch: int
    issued_at: datetime
    expires_at: datetime


class SessionModule:
    def __init__(
        self,
        redis_client,
        secret: str,
        default_ttl: int = 3600,
    ):
        """
        Initialize session module.

        Args:
            redis_client: Async Redis client (revocation denylist)
            secret: HMAC signing secret
            default_ttl: Session lifetime in seconds (1 hour)
        """
        if not secret:
            raise ValueError("A session signing secret is required")
        self.redis = redis_client
        self.secret = secret
        self.default_ttl = default_ttl

    def create_session(
        self,
        account_id: int,
        username: str,
        role: str,
        epoch: int = 0,
        ttl: Optional[int] = None,
    ) -> Tuple[str, SessionClaims]:
        """
        Create a signed session token.

        Args:
            account_id: Authenticated account
            username: Display name carried for convenience only
            role: Role at login; the guard re-reads the stored role
            epoch: Account session epoch; bumping it invalidates the token
            ttl: Lifetime override in seconds

        Returns:
            (encoded JWT, its claims)
        """
        now = utc_now().replace(microsecond=0)
        ttl = self.default_ttl if ttl is None else ttl
        session_id = str(uuid.uuid4())
        expires_at = now + timedelta(seconds=ttl)
        claims = {
            "iss": JWT_ISSUER,
            "sub": str(account_id),
            "jti": session_id,
            "username": username,
            "role": role,
            "epoch": epoch,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self.secret, algorithm=JWT_ALGORITHM)
        return token, SessionClaims(
            session_id=session_id,
            account_id=account_id,
            username=username,
            role=role,
            epoch=epoch,
            issued_at=now,
            expires_at=expires_at,
        )

    async def validate_session(self, token: str) -> Optional[SessionClaims]:
        """
        Verify signature, expiry and revocation of a session token.

        Returns:
            SessionClaims or None if the token is unusable
        """
        if not token:
            return None

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                issuer=JWT_ISSUER,
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Session token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid session token: {e}")
            return None

        if await self.is_revoked(claims["jti"]):
            logger.debug("Session token has been revoked")
            return None

        try:
            return SessionClaims(
                session_id=claims["jti"],
                account_id=int(claims["sub"]),
                username=claims.get("username", ""),
                role=claims.get("role", "user"),
                epoch=int(claims.get("epoch", 0)),
                issued_at=datetime.fromtimestamp(claims["iat"], tz=UTC),
                expires_at=datetime.fromtimestamp(claims["exp"], tz=UTC),
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Malformed session claims: {e}")
            return None

    async def end_session(self, claims: SessionClaims) -> None:
        """
        Revoke a session before it expires.

        The jti is denylisted until the token would have expired anyway.
        """
        remaining = int((claims.expires_at - utc_now()).total_seconds())
        if remaining <= 0:
            return
        await self.redis.setex(f"session:revoked:{claims.session_id}", remaining, "1")
        logger.debug(f"Session {claims.session_id} revoked")

    async def is_revoked(self, session_id: str) -> bool:
        return await self.redis.exists(f"session:revoked:{session_id}") > 0
