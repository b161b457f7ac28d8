"""
Credential store backed by Redis.

Layout:
    account:next_id              INCR counter for numeric ids
    account:{id}                 hash with the Account fields
    account:username:{username}  unique index -> id
    account:email:{email}        unique index -> id
    accounts:all                 set of ids
"""

import logging
import re
import secrets
from typing import Awaitable, Callable, Dict, List, Optional

from ...clock import Clock, utc_now
from ...errors import Conflict, NotFound, ValidationFailed
from ..storage import run_transaction
from .models import Account, Role
from .passwords import hash_password, validate_password_strength, verify_password

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PROFILE_FIELDS = ("first_name", "last_name")
MAX_NAME_LENGTH = 100

CascadeHook = Callable[[int], Awaitable[None]]


def normalize_email(email: str) -> str:
    """Lower-case and validate an email address."""
    email = (email or "").strip().lower()
    if len(email) > 254 or not EMAIL_PATTERN.match(email):
        raise ValidationFailed("Invalid email format", reason="invalid_email")
    return email


def validate_username(username: str) -> str:
    if not username or not USERNAME_PATTERN.match(username):
        raise ValidationFailed(
            "Username must be 3-30 characters of letters, digits, '_' or '-'",
            reason="invalid_username",
        )
    return username


def _clean_name(value: Optional[str]) -> str:
    value = (value or "").strip()
    # Names are rendered by the front end; drop markup characters
    value = re.sub(r"[<>\"'`]", "", value)
    return value[:MAX_NAME_LENGTH]


class AccountStore:
    """Persists accounts, password hashes and verification state."""

    def __init__(self, redis_client, bcrypt_rounds: int = 12, clock: Clock = utc_now):
        """
        Initialize account store.

        Args:
            redis_client: Async Redis client
            bcrypt_rounds: bcrypt cost factor for new hashes
            clock: Time source
        """
        self.redis = redis_client
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock
        self._cascades: List[CascadeHook] = []
        self._placeholder: Optional[str] = None

    @staticmethod
    def _account_key(account_id: int) -> str:
        return f"account:{account_id}"

    @staticmethod
    def _username_key(username: str) -> str:
        return f"account:username:{username.lower()}"

    @staticmethod
    def _email_key(email: str) -> str:
        return f"account:email:{email}"

    def add_cascade(self, hook: CascadeHook) -> None:
        """Register a coroutine run with the account id after an account is deleted."""
        self._cascades.append(hook)

    async def create_account(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        role: Role = Role.USER,
        verified: bool = False,
    ) -> Account:
        """
        Register a new account.

        Raises:
            ValidationFailed: On malformed username/email or a weak password
            Conflict: If the username or email is already registered
        """
        username = validate_username(username)
        email = normalize_email(email)
        validate_password_strength(password)

        password_hash = await hash_password(password, self.bcrypt_rounds)
        account_id = await self.redis.incr("account:next_id")
        account = Account(
            id=account_id,
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=_clean_name(first_name),
            last_name=_clean_name(last_name),
            verified=verified,
            role=role,
            created_at=self.clock(),
        )

        username_key = self._username_key(username)
        email_key = self._email_key(email)

        async def claim(pipe):
            if await pipe.exists(username_key):
                raise Conflict("Username already exists", reason="username_taken")
            if await pipe.exists(email_key):
                raise Conflict("Email already in use", reason="email_taken")
            pipe.multi()
            pipe.set(username_key, account_id)
            pipe.set(email_key, account_id)
            pipe.hset(self._account_key(account_id), mapping=account.to_hash())
            pipe.sadd("accounts:all", account_id)

        await run_transaction(self.redis, [username_key, email_key], claim)
        logger.info(f"Account {account_id} registered ({role.value})")
        return account

    async def get(self, account_id: int) -> Optional[Account]:
        data = await self.redis.hgetall(self._account_key(account_id))
        if not data:
            return None
        return Account.from_hash(data)

    async def require(self, account_id: int) -> Account:
        account = await self.get(account_id)
        if account is None:
            raise NotFound("User not found", reason="account_not_found")
        return account

    async def find_by_username(self, username: str) -> Optional[Account]:
        if not username:
            return None
        account_id = await self.redis.get(self._username_key(username))
        return await self.get(int(account_id)) if account_id else None

    async def find_by_email(self, email: str) -> Optional[Account]:
        if not email:
            return None
        account_id = await self.redis.get(self._email_key(email.strip().lower()))
        return await self.get(int(account_id)) if account_id else None

    async def verify_password(self, account: Account, plaintext: str) -> bool:
        """Check a candidate password against the stored hash."""
        return await verify_password(plaintext, account.password_hash)

    async def authenticate(self, username: str, plaintext: str) -> Optional[Account]:
        """
        Look up an account by username and check its password.

        Unknown usernames still pay for one bcrypt comparison, so response
        time does not reveal which usernames are registered.

        Returns:
            The account, or None on an unknown username or wrong password
        """
        account = await self.find_by_username(username)
        if account is None:
            await verify_password(plaintext, await self._placeholder_hash())
            return None
        if not await verify_password(plaintext, account.password_hash):
            return None
        return account

    async def _placeholder_hash(self) -> str:
        # Same cost factor as real hashes; computed once per store
        if self._placeholder is None:
            self._placeholder = await hash_password(secrets.token_urlsafe(16), self.bcrypt_rounds)
        return self._placeholder

    async def _update(self, account_id: int, mutate: Callable[[Account], Dict[str, str]]) -> Account:
        """
        Apply a read-modify-write to one account.

        ``mutate`` receives the current account and returns the hash fields to
        write; it may raise to abort.
        """
        key = self._account_key(account_id)

        async def apply(pipe):
            data = await pipe.hgetall(key)
            if not data:
                raise NotFound("User not found", reason="account_not_found")
            account = Account.from_hash(data)
            changes = mutate(account)
            pipe.multi()
            pipe.hset(key, mapping=changes)
            data.update(changes)
            return Account.from_hash(data)

        return await run_transaction(self.redis, [key], apply)

    async def mark_verified(self, account_id: int) -> Account:
        return await self._update(account_id, lambda account: {"verified": "1"})

    async def update_profile(self, account_id: int, fields: Dict[str, Optional[str]]) -> Account:
        """
        Update whitelisted profile fields.

        Only first_name and last_name may change here; identity fields go
        through the verified change flows.

        Raises:
            ValidationFailed: If no updatable field was supplied
        """
        changes = {
            name: _clean_name(value)
            for name, value in fields.items()
            if name in PROFILE_FIELDS and value is not None
        }
        if not changes:
            raise ValidationFailed("No fields to update", reason="no_changes")
        return await self._update(account_id, lambda account: changes)

    async def change_password_final(self, account_id: int, password_hash: str) -> Account:
        """
        Store a new password hash after a redeemed reset/change token.

        Bumps the session epoch so every existing session is invalidated.
        """

        def mutate(account: Account) -> Dict[str, str]:
            return {"password_hash": password_hash, "session_epoch": str(account.session_epoch + 1)}

        account = await self._update(account_id, mutate)
        logger.info(f"Password changed for account {account_id}")
        return account

    async def change_email_final(self, account_id: int, new_email: str) -> Account:
        """
        Swap the account's email after a redeemed email-change token.

        Raises:
            Conflict: If another account holds the address
            NotFound: If the account no longer exists
        """
        new_email = normalize_email(new_email)
        key = self._account_key(account_id)
        new_index = self._email_key(new_email)

        async def swap(pipe):
            data = await pipe.hgetall(key)
            if not data:
                raise NotFound("User not found", reason="account_not_found")
            owner = await pipe.get(new_index)
            if owner and int(owner) != account_id:
                raise Conflict("Email already in use by another account", reason="email_taken")
            account = Account.from_hash(data)
            changes = {"email": new_email, "session_epoch": str(account.session_epoch + 1)}
            pipe.multi()
            if account.email != new_email:
                pipe.delete(self._email_key(account.email))
            pipe.set(new_index, account_id)
            pipe.hset(key, mapping=changes)
            data.update(changes)
            return Account.from_hash(data)

        account = await run_transaction(self.redis, [key, new_index], swap)
        logger.info(f"Email changed for account {account_id}")
        return account

    async def delete_account(self, account_id: int) -> Account:
        """
        Delete an account and cascade to its keys, tokens and sessions.

        Sessions die with the account record: the session guard rejects any
        session whose account no longer exists.

        Raises:
            NotFound: If the account does not exist
        """
        key = self._account_key(account_id)

        async def remove(pipe):
            data = await pipe.hgetall(key)
            if not data:
                raise NotFound("User not found", reason="account_not_found")
            account = Account.from_hash(data)
            pipe.multi()
            pipe.delete(key, self._username_key(account.username), self._email_key(account.email))
            pipe.srem("accounts:all", account_id)
            return account

        account = await run_transaction(self.redis, [key], remove)
        for hook in self._cascades:
            await hook(account_id)
        logger.info(f"Account {account_id} deleted")
        return account

    async def list_accounts(self) -> List[Account]:
        ids = sorted(int(account_id) for account_id in await self.redis.smembers("accounts:all"))
        accounts = []
        for account_id in ids:
            account = await self.get(account_id)
            if account:
                accounts.append(account)
            else:
                # Clean up stale entry
                await self.redis.srem("accounts:all", account_id)
        return accounts

    async def ensure_admin(self, username: str, email: str, password: str) -> Account:
        """
        Bootstrap the configured administrator.

        Creates the account on first start; afterwards keeps it verified,
        admin and in sync with the configured password.
        """
        account = await self.find_by_username(username)
        if account is None:
            return await self.create_account(
                username, email, password, first_name="Admin", role=Role.ADMIN, verified=True
            )

        changes = {"role": Role.ADMIN.value, "verified": "1"}
        if not await self.verify_password(account, password):
            changes["password_hash"] = await hash_password(password, self.bcrypt_rounds)
        return await self._update(account.id, lambda current: changes)
