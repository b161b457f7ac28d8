"""
Authentication Module - Black Box Interface

Purpose: Resolve who is making a request (session cookie or X-API-Key)
Interface: SessionGuard.resolve(), Principal, GuardResult
Hidden: Token formats, revocation checks, role lookup

Roles and verification state are always read from the account store,
never trusted from the token itself.
"""

from .guard import API_KEY_HEADER, GuardResult, GuardStatus, Principal, PrincipalKind, SessionGuard

__all__ = [
    "API_KEY_HEADER",
    "GuardResult",
    "GuardStatus",
    "Principal",
    "PrincipalKind",
    "SessionGuard",
]
