"""
API Keys Module - Black Box Interface

Purpose: Two-slot (primary/secondary) API key lifecycle per account
Interface: ApiKeyManager.generate(), toggle(), revoke(), verify(), get_slots()
Hidden: Key format, lookup index, cooldown bookkeeping, transactions

Every mutating call returns the authoritative slot state so callers never
need a follow-up read.
"""

from .manager import ApiKeyManager, ApiKeySlot, KeySlot

__all__ = ["ApiKeyManager", "ApiKeySlot", "KeySlot"]
