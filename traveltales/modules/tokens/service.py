import json
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from ...clock import Clock, utc_now
from ...errors import Expired, Mismatch, NotFound
from ..storage import digest, run_transaction

logger = logging.getLogger(__name__)

# Records outlive their expiry so late redemptions report Expired, not NotFound
RETENTION_GRACE_SECONDS = 86400


class TokenPurpose(str, Enum):
    """The state transition a token gates."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"
    EMAIL_CHANGE = "email_change"


DEFAULT_TTLS = {
    TokenPurpose.EMAIL_VERIFICATION: 86400,
    TokenPurpose.PASSWORD_RESET: 3600,
    TokenPurpose.PASSWORD_CHANGE: 3600,
    TokenPurpose.EMAIL_CHANGE: 3600,
}


class TokenService:
    def __init__(
        self,
        redis_client,
        ttls: Optional[Dict[TokenPurpose, int]] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize token service.

        Args:
            redis_client: Async Redis client
            ttls: Per-purpose lifetime in seconds, merged over the defaults
            clock: Time source
        """
        self.redis = redis_client
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)
        self.clock = clock

    @staticmethod
    def _token_key(token_digest: str) -> str:
        return f"token:{token_digest}"

    @staticmethod
    def _pointer_key(account_id: int, purpose: TokenPurpose) -> str:
        return f"token:current:{account_id}:{purpose.value}"

    async def issue(
        self,
        account_id: int,
        purpose: TokenPurpose,
        ttl: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> str:
        """
        Issue a new token, superseding any earlier one for (account, purpose).

        Args:
            account_id: Owning account
            purpose: Transition this token gates
            ttl: Lifetime in seconds (defaults per purpose)
            payload: JSON-serialisable data returned on redemption

        Returns:
            The opaque token value (only its digest is stored)

        Logic:
        1. Generate 256 bits of randomness
        2. Store the record under the token digest
        3. Swap the (account, purpose) pointer to the new digest
        4. Delete the superseded record
        """
        ttl = ttl if ttl is not None else self.ttls[purpose]
        token = secrets.token_urlsafe(32)
        token_digest = digest(token)
        expires_at = self.clock() + timedelta(seconds=ttl)

        record = {
            "account_id": str(account_id),
            "purpose": purpose.value,
            "expires_at": expires_at.isoformat(),
            "payload": json.dumps(payload or {}),
        }
        token_key = self._token_key(token_digest)
        retention = max(ttl, 0) + RETENTION_GRACE_SECONDS

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(token_key, mapping=record)
            pipe.expire(token_key, retention)
            pipe.set(self._pointer_key(account_id, purpose), token_digest, ex=retention, get=True)
            results = await pipe.execute()

        previous = results[-1]
        if previous and previous != token_digest:
            await self.redis.delete(self._token_key(previous))

        logger.debug(f"Issued {purpose.value} token for account {account_id}")
        return token

    async def redeem(self, token: str, account_id: int, purpose: TokenPurpose) -> dict:
        """
        Redeem a token exactly once.

        Returns:
            The payload stored at issue time

        Raises:
            NotFound: Unknown, superseded or already consumed token
            Mismatch: Token belongs to another account or purpose
            Expired: Token is past its expiry
        """
        if not token:
            raise NotFound("Invalid or expired link", reason="token_not_found")

        token_digest = digest(token)
        token_key = self._token_key(token_digest)
        pointer_key = self._pointer_key(account_id, purpose)

        async def claim(pipe):
            record = await pipe.hgetall(token_key)
            if not record or record.get("consumed_at"):
                raise NotFound("Invalid or expired link", reason="token_not_found")

            if record["purpose"] != purpose.value or int(record["account_id"]) != int(account_id):
                raise Mismatch("Invalid or expired link")

            if await pipe.get(pointer_key) != token_digest:
                raise NotFound(
                    "This link has been superseded by a newer one", reason="token_superseded"
                )

            now = self.clock()
            if now >= datetime.fromisoformat(record["expires_at"]):
                raise Expired("Invalid or expired link")

            # unconsumed -> consumed; a concurrent redeemer aborts and re-reads
            pipe.multi()
            pipe.hset(token_key, "consumed_at", now.isoformat())
            pipe.delete(pointer_key)
            return json.loads(record.get("payload") or "{}")

        payload = await run_transaction(self.redis, [token_key, pointer_key], claim)
        logger.debug(f"Redeemed {purpose.value} token for account {account_id}")
        return payload

    async def has_outstanding(self, account_id: int, purpose: TokenPurpose) -> bool:
        return bool(await self.redis.exists(self._pointer_key(account_id, purpose)))

    async def revoke_all(self, account_id: int) -> None:
        """Drop every current token of an account (used on account deletion)."""
        for purpose in TokenPurpose:
            pointer_key = self._pointer_key(account_id, purpose)
            current = await self.redis.get(pointer_key)
            if current:
                await self.redis.delete(self._token_key(current), pointer_key)
