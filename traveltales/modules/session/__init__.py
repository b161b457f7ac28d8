"""
Session Module - Black Box Interface

Purpose: Manage login session lifecycle
Interface: create_session(), validate_session(), end_session()
Hidden: Token format, signing, revocation storage

Replaceable with any session backend (server-side store, opaque tokens).
"""

from .session import SESSION_COOKIE_NAME, SessionClaims, SessionModule

__all__ = ["SESSION_COOKIE_NAME", "SessionClaims", "SessionModule"]
