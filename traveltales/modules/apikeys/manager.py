import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from redis.exceptions import WatchError

from ...clock import Clock, utc_now
from ...errors import NotFound, TooManyRequests
from ..storage import digest, run_transaction

logger = logging.getLogger(__name__)

KEY_PREFIX = "tt_"


class KeySlot(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class ApiKeySlot:
    """State of one key slot; an empty slot has no value and no timestamps."""

    slot: KeySlot
    key_value: Optional[str] = None
    is_active: bool = False
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    last_generated_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.key_value is None

    @classmethod
    def from_hash(cls, slot: KeySlot, data: Dict[str, str]) -> "ApiKeySlot":
        if not data or not data.get("key_value"):
            return cls(slot=slot)

        def _ts(name: str) -> Optional[datetime]:
            value = data.get(name)
            return datetime.fromisoformat(value) if value else None

        return cls(
            slot=slot,
            key_value=data["key_value"],
            is_active=data.get("is_active") == "1",
            created_at=_ts("created_at"),
            last_used_at=_ts("last_used_at"),
            last_generated_at=_ts("last_generated_at"),
        )

    def to_dict(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "key_type": self.slot.value,
            "key_value": self.key_value,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "last_used_at": _iso(self.last_used_at),
            "last_generated_at": _iso(self.last_generated_at),
        }


def generate_api_key() -> str:
    """High-entropy opaque key value (256 bits)."""
    return KEY_PREFIX + secrets.token_urlsafe(32)


def format_wait(seconds: int) -> str:
    """Human readable wait, e.g. '4 minutes and 5 seconds'."""
    minutes, seconds = divmod(max(seconds, 0), 60)
    parts = []
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if seconds or not minutes:
        parts.append(f"{seconds} second{'s' if seconds != 1 else ''}")
    return " and ".join(parts)


class ApiKeyManager:
    """
    Generates, activates, rotates and revokes the two key slots of an account.

    Layout:
        apikey:{account_id}:{slot}           slot hash (absent when empty)
        apikey:lookup:{sha256(key)}          "{account_id}:{slot}"
        apikey:cooldown:{account_id}:{slot}  time of last self-service generation
    """

    def __init__(self, redis_client, cooldown_seconds: int = 300, clock: Clock = utc_now):
        """
        Initialize API key manager.

        Args:
            redis_client: Async Redis client
            cooldown_seconds: Minimum gap between self-service generations per slot
            clock: Time source
        """
        self.redis = redis_client
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

    @staticmethod
    def _slot_key(account_id: int, slot: KeySlot) -> str:
        return f"apikey:{account_id}:{slot.value}"

    @staticmethod
    def _lookup_key(key_value: str) -> str:
        return f"apikey:lookup:{digest(key_value)}"

    @staticmethod
    def _cooldown_key(account_id: int, slot: KeySlot) -> str:
        return f"apikey:cooldown:{account_id}:{slot.value}"

    async def get_slot(self, account_id: int, slot: KeySlot) -> ApiKeySlot:
        return ApiKeySlot.from_hash(slot, await self.redis.hgetall(self._slot_key(account_id, slot)))

    async def get_slots(self, account_id: int) -> Dict[str, ApiKeySlot]:
        return {slot.value: await self.get_slot(account_id, slot) for slot in KeySlot}

    def _check_cooldown(self, last_generated: Optional[str], slot: KeySlot, now: datetime) -> None:
        if not last_generated:
            return
        ready_at = datetime.fromisoformat(last_generated) + timedelta(seconds=self.cooldown_seconds)
        if now < ready_at:
            remaining = int((ready_at - now).total_seconds() + 0.999)
            raise TooManyRequests(
                f"Please wait {format_wait(remaining)} before generating a new {slot.value} API key",
                retry_after=remaining,
                reset_at=ready_at,
                reason="api_key_cooldown",
            )

    async def generate(
        self, account_id: int, slot: KeySlot, enforce_cooldown: bool = True
    ) -> ApiKeySlot:
        """
        Generate (or rotate) the key in a slot.

        The new key starts inactive; the previous value stops working
        immediately.

        Args:
            account_id: Owning account
            slot: primary or secondary
            enforce_cooldown: False for administrative override and registration

        Raises:
            TooManyRequests: If the slot was self-service generated within the cooldown
        """
        slot_key = self._slot_key(account_id, slot)
        cooldown_key = self._cooldown_key(account_id, slot)

        async def rotate(pipe):
            now = self.clock()
            if enforce_cooldown:
                self._check_cooldown(await pipe.get(cooldown_key), slot, now)

            old_value = await pipe.hget(slot_key, "key_value")
            new_value = generate_api_key()
            fields = {
                "key_value": new_value,
                "is_active": "0",
                "created_at": now.isoformat(),
                "last_generated_at": now.isoformat(),
            }

            pipe.multi()
            if old_value:
                pipe.delete(self._lookup_key(old_value))
            pipe.delete(slot_key)
            pipe.hset(slot_key, mapping=fields)
            pipe.set(self._lookup_key(new_value), f"{account_id}:{slot.value}")
            if enforce_cooldown:
                # Expiry is only housekeeping; the check above uses the stored time
                pipe.set(cooldown_key, now.isoformat(), ex=self.cooldown_seconds + 60)
            return ApiKeySlot.from_hash(slot, fields)

        result = await run_transaction(self.redis, [slot_key, cooldown_key], rotate)
        logger.info(f"Generated {slot.value} API key for account {account_id}")
        return result

    async def toggle(self, account_id: int, slot: KeySlot, active: bool) -> ApiKeySlot:
        """
        Set a slot's active flag. Idempotent.

        Raises:
            NotFound: If the slot holds no key
        """
        slot_key = self._slot_key(account_id, slot)

        async def flip(pipe):
            data = await pipe.hgetall(slot_key)
            if not data or not data.get("key_value"):
                raise NotFound(f"No {slot.value} API key to update", reason="api_key_not_found")
            pipe.multi()
            pipe.hset(slot_key, "is_active", "1" if active else "0")
            data["is_active"] = "1" if active else "0"
            return ApiKeySlot.from_hash(slot, data)

        result = await run_transaction(self.redis, [slot_key], flip)
        logger.info(
            f"{slot.value} API key for account {account_id} "
            f"{'activated' if active else 'deactivated'}"
        )
        return result

    async def revoke(self, account_id: int, slot: KeySlot) -> ApiKeySlot:
        """
        Delete the key in a slot, returning the now-empty slot.

        Raises:
            NotFound: If the slot is already empty
        """
        slot_key = self._slot_key(account_id, slot)

        async def clear(pipe):
            key_value = await pipe.hget(slot_key, "key_value")
            if not key_value:
                raise NotFound(f"No {slot.value} API key to delete", reason="api_key_not_found")
            pipe.multi()
            pipe.delete(slot_key, self._lookup_key(key_value))
            return ApiKeySlot(slot=slot)

        result = await run_transaction(self.redis, [slot_key], clear)
        logger.info(f"Revoked {slot.value} API key for account {account_id}")
        return result

    async def delete_all(self, account_id: int) -> None:
        """Clear both slots and cooldowns (account deletion cascade)."""
        for slot in KeySlot:
            try:
                await self.revoke(account_id, slot)
            except NotFound:
                pass
            await self.redis.delete(self._cooldown_key(account_id, slot))

    async def verify(self, key_value: str) -> Optional[Tuple[int, KeySlot]]:
        """
        Resolve a presented key to its owning account and slot.

        Returns:
            (account_id, slot) for an existing active key, otherwise None
        """
        if not key_value:
            return None

        owner = await self.redis.get(self._lookup_key(key_value))
        if not owner:
            return None

        account_part, slot_part = owner.split(":", 1)
        account_id, slot = int(account_part), KeySlot(slot_part)
        data = await self.redis.hgetall(self._slot_key(account_id, slot))
        stored = data.get("key_value") if data else None

        # Use constant-time comparison for security
        if not stored or not secrets.compare_digest(stored, key_value):
            return None
        if data.get("is_active") != "1":
            return None

        await self._touch(account_id, slot, key_value)
        return account_id, slot

    async def _touch(self, account_id: int, slot: KeySlot, key_value: str) -> None:
        """Best-effort last_used_at update that never resurrects a revoked slot."""
        slot_key = self._slot_key(account_id, slot)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(slot_key)
                if await pipe.hget(slot_key, "key_value") != key_value:
                    return
                pipe.multi()
                pipe.hset(slot_key, "last_used_at", self.clock().isoformat())
                await pipe.execute()
        except WatchError:
            logger.debug(f"Skipped last_used_at update for account {account_id} ({slot.value})")
