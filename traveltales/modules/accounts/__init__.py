"""
Accounts Module - Black Box Interface

Purpose: Credential store for user identity and verification state
Interface: AccountStore.create_account(), verify_password(), update_profile(),
           change_password_final(), change_email_final(), delete_account()
Hidden: Redis layout, unique indexes, bcrypt parameters

Replaceable with any relational or document store honouring the same contract.
"""

from .models import Account, Role
from .passwords import hash_password, validate_password_strength, verify_password
from .store import AccountStore

__all__ = [
    "Account",
    "AccountStore",
    "Role",
    "hash_password",
    "validate_password_strength",
    "verify_password",
]
