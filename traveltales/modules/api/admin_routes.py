"""
Administrative routes under /admin.

Admins act on any account; key generation here bypasses the self-service
cooldown but still rotates the slot atomically.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ...errors import Forbidden
from ..apikeys import KeySlot
from ..auth import Principal
from .dependencies import Services, client_ip, get_services, rate_limit, require_admin
from .models import (
    AdminToggleKeyRequest,
    AdminUsersResponse,
    ApiKeyChangeResponse,
    ApiKeySlotResponse,
    MessageResponse,
    ProfileResponse,
    slots_response,
)

logger = logging.getLogger(__name__)


def create_admin_router() -> APIRouter:
    """Build the /admin router; every route requires an admin session."""
    router = APIRouter(
        prefix="/admin",
        tags=["admin"],
        dependencies=[Depends(rate_limit("general")), Depends(require_admin)],
    )

    @router.get("/check-auth")
    async def check_auth(principal: Principal = Depends(require_admin)):
        return {"isAdmin": True, "userId": principal.account_id, "username": principal.username}

    @router.get("/users", response_model=AdminUsersResponse)
    async def list_users(services: Services = Depends(get_services)):
        users = []
        for account in await services.accounts.list_accounts():
            slots = await services.apikeys.get_slots(account.id)
            users.append(ProfileResponse(**account.public_view(), api_keys=slots_response(slots)))
        return AdminUsersResponse(users=users, count=len(users))

    @router.delete("/users/{user_id}", response_model=MessageResponse)
    async def delete_user(
        user_id: int,
        request: Request,
        principal: Principal = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        if user_id == principal.account_id:
            raise Forbidden("Administrators cannot delete their own account here", reason="self_delete")
        await services.accounts.delete_account(user_id)
        await services.audit.record(
            "admin_user_deleted", ip=client_ip(request), user_id=user_id, actor_id=principal.account_id
        )
        return MessageResponse(message="User deleted successfully")

    @router.post("/users/{user_id}/api-keys/{key_type}/generate", response_model=ApiKeyChangeResponse)
    async def generate_key(
        user_id: int,
        key_type: KeySlot,
        request: Request,
        principal: Principal = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        await services.accounts.require(user_id)
        slot = await services.apikeys.generate(user_id, key_type, enforce_cooldown=False)
        await services.audit.record(
            "admin_api_key_generated",
            ip=client_ip(request),
            user_id=user_id,
            actor_id=principal.account_id,
            key_type=key_type.value,
        )
        return ApiKeyChangeResponse(
            message=f"New {key_type.value} API Key generated successfully",
            apiKey=ApiKeySlotResponse(**slot.to_dict()),
        )

    @router.put("/users/{user_id}/api-keys/{key_type}/toggle", response_model=ApiKeyChangeResponse)
    async def toggle_key(
        user_id: int,
        key_type: KeySlot,
        payload: AdminToggleKeyRequest,
        request: Request,
        principal: Principal = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        slot = await services.apikeys.toggle(user_id, key_type, payload.is_active)
        await services.audit.record(
            "admin_api_key_toggled",
            ip=client_ip(request),
            user_id=user_id,
            actor_id=principal.account_id,
            key_type=key_type.value,
            is_active=slot.is_active,
        )
        return ApiKeyChangeResponse(
            message=f"API key {'activated' if slot.is_active else 'deactivated'} successfully",
            apiKey=ApiKeySlotResponse(**slot.to_dict()),
        )

    @router.delete("/users/{user_id}/api-keys/{key_type}")
    async def delete_key(
        user_id: int,
        key_type: KeySlot,
        request: Request,
        principal: Principal = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        await services.apikeys.revoke(user_id, key_type)
        await services.audit.record(
            "admin_api_key_deleted",
            ip=client_ip(request),
            user_id=user_id,
            actor_id=principal.account_id,
            key_type=key_type.value,
        )
        slots = slots_response(await services.apikeys.get_slots(user_id))
        return {"message": "API Key deleted successfully", "success": True, "apiKeys": slots}

    return router
