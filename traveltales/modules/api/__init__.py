"""
API Module - Black Box Interface

Purpose: HTTP routing and module orchestration
Interface: create_auth_router(), create_admin_router(), create_country_router()
Hidden: Request parsing, cookie handling, response shaping

The API module only orchestrates - it contains no business logic.
All logic is delegated to appropriate modules.
"""

from .admin_routes import create_admin_router
from .audit import AuditLog
from .auth_routes import create_auth_router
from .country_routes import create_country_router
from .dependencies import Services

__all__ = [
    "AuditLog",
    "Services",
    "create_admin_router",
    "create_auth_router",
    "create_country_router",
]
