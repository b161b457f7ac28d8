"""
Session guard for the TravelTales API.

Turns the credentials on a request into a Principal. A request carries
either a session cookie (browser clients) or an X-API-Key header (data
plane clients); when both are present the API key wins, since key holders
never act with session privileges.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Request

from ..accounts import AccountStore, Role
from ..apikeys import ApiKeyManager, KeySlot
from ..session import SESSION_COOKIE_NAME, SessionClaims, SessionModule

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class PrincipalKind(str, Enum):
    SESSION = "session"
    API_KEY = "api_key"


class GuardStatus(str, Enum):
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    REJECTED = "rejected"


@dataclass
class Principal:
    """The authenticated caller of a request."""

    kind: PrincipalKind
    account_id: int
    username: str
    role: Role
    verified: bool = True
    claims: Optional[SessionClaims] = None
    key_slot: Optional[KeySlot] = None

    @property
    def is_admin(self) -> bool:
        # Key bearers are read-only regardless of the owner's role
        return self.kind == PrincipalKind.SESSION and self.role == Role.ADMIN


@dataclass
class GuardResult:
    status: GuardStatus
    principal: Optional[Principal] = None
    reason: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.status == GuardStatus.AUTHENTICATED


ANONYMOUS = GuardResult(GuardStatus.ANONYMOUS)


class SessionGuard:
    """Resolves request credentials against the session module and key manager."""

    def __init__(
        self,
        session_module: SessionModule,
        account_store: AccountStore,
        apikey_manager: ApiKeyManager,
    ):
        self.sessions = session_module
        self.accounts = account_store
        self.apikeys = apikey_manager

    async def resolve(self, request: Request) -> GuardResult:
        """
        Resolve the principal behind a request.

        Returns:
            ANONYMOUS when no credentials were presented, REJECTED with a
            reason when they were presented but are unusable
        """
        api_key = request.headers.get(API_KEY_HEADER)
        if api_key:
            return await self.resolve_api_key(api_key)

        token = request.cookies.get(SESSION_COOKIE_NAME)
        if token:
            return await self.resolve_session(token)

        return ANONYMOUS

    async def resolve_session(self, token: str) -> GuardResult:
        """
        Validate a session token.

        Logic:
        1. Verify signature, expiry and the revocation denylist
        2. Load the account; a deleted account ends the session
        3. Compare session epochs; a password or email change ends the session
        4. Take role and verification from the stored account
        """
        claims = await self.sessions.validate_session(token)
        if claims is None:
            return GuardResult(GuardStatus.REJECTED, reason="invalid_session")

        account = await self.accounts.get(claims.account_id)
        if account is None:
            logger.debug(f"Session {claims.session_id} belongs to a deleted account")
            return GuardResult(GuardStatus.REJECTED, reason="invalid_session")

        if account.session_epoch != claims.epoch:
            logger.debug(f"Session {claims.session_id} predates a credential change")
            return GuardResult(GuardStatus.REJECTED, reason="invalid_session")

        principal = Principal(
            kind=PrincipalKind.SESSION,
            account_id=account.id,
            username=account.username,
            role=account.role,
            verified=account.verified,
            claims=claims,
        )
        return GuardResult(GuardStatus.AUTHENTICATED, principal)

    async def resolve_api_key(self, api_key: str) -> GuardResult:
        resolved = await self.apikeys.verify(api_key)
        if resolved is None:
            logger.warning(f"Invalid API key attempted: {api_key[:8]}...")
            return GuardResult(GuardStatus.REJECTED, reason="invalid_api_key")

        account_id, slot = resolved
        account = await self.accounts.get(account_id)
        if account is None:
            return GuardResult(GuardStatus.REJECTED, reason="invalid_api_key")

        principal = Principal(
            kind=PrincipalKind.API_KEY,
            account_id=account.id,
            username=account.username,
            role=account.role,
            verified=account.verified,
            key_slot=slot,
        )
        return GuardResult(GuardStatus.AUTHENTICATED, principal)
