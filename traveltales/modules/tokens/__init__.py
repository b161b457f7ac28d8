"""
Tokens Module - Black Box Interface

Purpose: Issue and redeem short-lived single-use tokens
Interface: TokenService.issue(), TokenService.redeem(), TokenService.revoke_all()
Hidden: Token storage, digesting, supersession pointers, atomic claims

Used by the registration, password-reset and change-confirmation flows.
"""

from .service import TokenPurpose, TokenService

__all__ = ["TokenPurpose", "TokenService"]
