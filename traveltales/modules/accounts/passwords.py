"""Salted slow hashing for account passwords."""

import asyncio
import re

import bcrypt

from ...errors import ValidationFailed

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def validate_password_strength(password: str) -> None:
    """
    Reject weak or unusable passwords.

    Raises:
        ValidationFailed: If the password is too short, too long, or lacks
            either a letter or a digit
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", reason="weak_password"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailed("Password is too long", reason="weak_password")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValidationFailed(
            "Password must contain at least one letter and one digit", reason="weak_password"
        )


async def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt off the event loop."""

    def _hash() -> str:
        salt = bcrypt.gensalt(rounds=rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    return await asyncio.to_thread(_hash)


async def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of a password against its bcrypt hash."""
    if not password or not password_hash:
        return False

    def _check() -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    return await asyncio.to_thread(_check)
