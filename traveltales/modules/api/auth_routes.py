"""
Account, session and self-service API key routes under /auth.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from ...errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from ..accounts import Account, hash_password, validate_password_strength
from ..accounts.store import normalize_email
from ..apikeys import KeySlot
from ..auth import Principal
from ..security import CSRF_COOKIE_NAME
from ..session import SESSION_COOKIE_NAME, SessionClaims
from ..tokens import TokenPurpose
from .dependencies import (
    Services,
    client_ip,
    get_services,
    optional_session,
    rate_limit,
    require_session,
)
from .models import (
    ApiKeyChangeResponse,
    ApiKeySlotResponse,
    ApiKeySlotsResponse,
    ChangeEmailRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GenerateKeyRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    SessionInfoResponse,
    ToggleKeyRequest,
    UpdateProfileRequest,
    slots_response,
)

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If your email is registered, you'll receive a password reset link shortly"
RESEND_MESSAGE = "If the account exists and is unverified, a new verification email has been sent"


def set_session_cookies(
    response: Response, services: Services, token: str, claims: SessionClaims
) -> str:
    """Attach the session cookie and a fresh CSRF token bound to it."""
    secure = bool(services.config.get("cookie_secure"))
    max_age = int((claims.expires_at - claims.issued_at).total_seconds())
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=max_age,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
    )
    csrf_token = services.csrf.mint(claims.session_id)
    set_csrf_cookie(response, services, csrf_token, max_age)
    return csrf_token


def set_csrf_cookie(response: Response, services: Services, csrf_token: str, max_age: int) -> None:
    # Readable by the front end so it can echo it in X-CSRF-Token
    response.set_cookie(
        CSRF_COOKIE_NAME,
        csrf_token,
        max_age=max_age,
        httponly=False,
        secure=bool(services.config.get("cookie_secure")),
        samesite="strict",
        path="/",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    response.delete_cookie(CSRF_COOKIE_NAME, path="/")


async def redeem_link(services: Services, token: str, account_id: int, purpose: TokenPurpose) -> dict:
    """Redeem an emailed link; unknown and superseded links are a client error here."""
    try:
        return await services.tokens.redeem(token, account_id, purpose)
    except NotFound as e:
        raise ValidationFailed("Invalid or expired link", reason=e.reason) from e


async def profile_response(services: Services, account: Account) -> ProfileResponse:
    slots = await services.apikeys.get_slots(account.id)
    return ProfileResponse(**account.public_view(), api_keys=slots_response(slots))


def check_key_owner(principal: Principal, user_id: int) -> None:
    if principal.account_id != user_id and not principal.is_admin:
        raise Forbidden("You can only modify your own API keys", reason="not_key_owner")


def create_auth_router() -> APIRouter:
    """Build the /auth router."""
    router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(rate_limit("general"))])
    auth_limit = Depends(rate_limit("auth"))

    @router.get("/csrf-token")
    async def csrf_token(
        response: Response,
        principal: Optional[Principal] = Depends(optional_session),
        services: Services = Depends(get_services),
    ):
        """Mint a CSRF token bound to the current session (or an anonymous one)."""
        session_id = principal.claims.session_id if principal else None
        token = services.csrf.mint(session_id)
        set_csrf_cookie(response, services, token, int(services.config.get("session_ttl", 3600)))
        return {"csrfToken": token}

    @router.post("/register", status_code=201, response_model=RegisterResponse, dependencies=[auth_limit])
    async def register(
        payload: RegisterRequest, request: Request, services: Services = Depends(get_services)
    ):
        """
        Register an account.

        Logic:
        1. Create the unverified account (unique username and email)
        2. Create the primary API key slot, inactive until the user enables it
        3. Issue and mail an email-verification token
        """
        account = await services.accounts.create_account(
            payload.username,
            payload.email,
            payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
        await services.apikeys.generate(account.id, KeySlot.PRIMARY, enforce_cooldown=False)

        token = await services.tokens.issue(account.id, TokenPurpose.EMAIL_VERIFICATION)
        await services.mail.send_verification(account.email, account.username, token, account.id)
        await services.audit.record(
            "register", ip=client_ip(request), user_id=account.id, username=account.username
        )
        return RegisterResponse(
            message="User registered successfully. Please check your email to verify your account.",
            userId=account.id,
            username=account.username,
            verified=False,
        )

    async def _login(
        payload: LoginRequest, request: Request, response: Response, services: Services, admin: bool
    ) -> LoginResponse:
        event = "admin_login" if admin else "login"
        account = await services.accounts.authenticate(payload.username, payload.password)
        if account is None:
            await services.audit.record(
                f"{event}_failure", ip=client_ip(request), username=payload.username
            )
            raise Unauthorized("Invalid username or password", reason="invalid_credentials")

        if admin and not account.is_admin:
            await services.audit.record(
                f"{event}_failure", ip=client_ip(request), username=payload.username, reason="not_admin"
            )
            raise Unauthorized("Invalid admin credentials", reason="invalid_credentials")

        if not account.verified:
            await services.audit.record(
                "login_verification_required", ip=client_ip(request), user_id=account.id
            )
            raise Forbidden(
                "Email not verified. Please check your inbox and verify your email before logging in.",
                reason="email_not_verified",
            )

        token, claims = services.sessions.create_session(
            account.id, account.username, account.role.value, epoch=account.session_epoch
        )
        csrf_token = set_session_cookies(response, services, token, claims)
        await services.audit.record(f"{event}_success", ip=client_ip(request), user_id=account.id)
        return LoginResponse(
            message="Login successful!",
            userId=account.id,
            username=account.username,
            role=account.role.value,
            verified=True,
            csrfToken=csrf_token,
        )

    @router.post("/login", response_model=LoginResponse, dependencies=[auth_limit])
    async def login(
        payload: LoginRequest,
        request: Request,
        response: Response,
        services: Services = Depends(get_services),
    ):
        return await _login(payload, request, response, services, admin=False)

    @router.post("/admin/login", response_model=LoginResponse, dependencies=[auth_limit])
    async def admin_login(
        payload: LoginRequest,
        request: Request,
        response: Response,
        services: Services = Depends(get_services),
    ):
        return await _login(payload, request, response, services, admin=True)

    @router.post("/logout", response_model=MessageResponse)
    async def logout(
        request: Request,
        response: Response,
        principal: Optional[Principal] = Depends(optional_session),
        services: Services = Depends(get_services),
    ):
        """Revoke the current session server-side and clear its cookies."""
        if principal is not None:
            await services.sessions.end_session(principal.claims)
            await services.audit.record("logout", ip=client_ip(request), user_id=principal.account_id)
        clear_session_cookies(response)
        return MessageResponse(message="Logged out successfully", logout=True)

    @router.get("/verify-email", response_model=MessageResponse)
    async def verify_email(
        request: Request,
        token: str = Query(..., min_length=1),
        user_id: int = Query(..., alias="userId"),
        services: Services = Depends(get_services),
    ):
        account = await services.accounts.get(user_id)
        if account is None:
            raise ValidationFailed("Invalid or expired verification link", reason="token_not_found")
        if account.verified:
            return MessageResponse(message="Your email is already verified. You can now login.")

        await redeem_link(services, token, user_id, TokenPurpose.EMAIL_VERIFICATION)
        await services.accounts.mark_verified(user_id)
        await services.audit.record("email_verified", ip=client_ip(request), user_id=user_id)
        return MessageResponse(message="Email verification successful! You can now login.")

    @router.post("/resend-verification", response_model=MessageResponse, dependencies=[auth_limit])
    async def resend_verification(
        payload: Optional[ResendVerificationRequest] = None,
        principal: Optional[Principal] = Depends(optional_session),
        services: Services = Depends(get_services),
    ):
        """
        Issue a fresh verification link, superseding any earlier one.

        The account is identified by email and the answer is always the
        same, so the endpoint does not reveal registrations. Login requires
        a verified email, so a caller holding a session is always verified
        and is turned away with ``already_verified``.
        """
        if principal is not None:
            raise ValidationFailed("Email already verified", reason="already_verified")

        email = payload.email if payload else None
        if not email:
            raise ValidationFailed("Email is required", reason="email_required")
        account = await services.accounts.find_by_email(email)
        if account is None or account.verified:
            return MessageResponse(message=RESEND_MESSAGE)

        token = await services.tokens.issue(account.id, TokenPurpose.EMAIL_VERIFICATION)
        await services.mail.send_verification(account.email, account.username, token, account.id)
        return MessageResponse(message=RESEND_MESSAGE)

    @router.post("/forgot-password", response_model=MessageResponse, dependencies=[auth_limit])
    async def forgot_password(
        payload: ForgotPasswordRequest, request: Request, services: Services = Depends(get_services)
    ):
        account = await services.accounts.find_by_email(payload.email)
        if account is not None:
            token = await services.tokens.issue(account.id, TokenPurpose.PASSWORD_RESET)
            await services.mail.send_password_reset(account.email, account.username, token, account.id)
            await services.audit.record("password_reset_requested", ip=client_ip(request), user_id=account.id)
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    @router.post("/reset-password", response_model=MessageResponse)
    async def reset_password(
        payload: ResetPasswordRequest, request: Request, services: Services = Depends(get_services)
    ):
        validate_password_strength(payload.password)
        await redeem_link(services, payload.token, payload.user_id, TokenPurpose.PASSWORD_RESET)

        password_hash = await hash_password(payload.password, services.accounts.bcrypt_rounds)
        account = await services.accounts.change_password_final(payload.user_id, password_hash)
        await services.mail.send_password_changed(account.email, account.username)
        await services.audit.record("password_reset", ip=client_ip(request), user_id=account.id)
        return MessageResponse(
            message="Password reset successful. You can now log in with your new password."
        )

    @router.get("/profile", response_model=ProfileResponse)
    async def get_profile(
        principal: Principal = Depends(require_session), services: Services = Depends(get_services)
    ):
        account = await services.accounts.require(principal.account_id)
        return await profile_response(services, account)

    @router.post("/update-profile", response_model=ProfileResponse)
    async def update_profile(
        payload: UpdateProfileRequest,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        account = await services.accounts.update_profile(
            principal.account_id, payload.model_dump(exclude_none=True)
        )
        return await profile_response(services, account)

    @router.post("/change-password", response_model=MessageResponse)
    async def change_password(
        payload: ChangePasswordRequest,
        request: Request,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        """
        Start a password change.

        Nothing changes until the mailed link is followed; the token carries
        the hash of the new password.
        """
        account = await services.accounts.require(principal.account_id)
        if not await services.accounts.verify_password(account, payload.current_password):
            await services.audit.record("password_change_denied", ip=client_ip(request), user_id=account.id)
            raise Unauthorized("Current password is incorrect", reason="wrong_password")

        validate_password_strength(payload.new_password)
        if payload.new_password == payload.current_password:
            raise ValidationFailed(
                "New password must differ from the current one", reason="password_unchanged"
            )

        password_hash = await hash_password(payload.new_password, services.accounts.bcrypt_rounds)
        token = await services.tokens.issue(
            account.id, TokenPurpose.PASSWORD_CHANGE, payload={"password_hash": password_hash}
        )
        await services.mail.send_password_change_verification(
            account.email, account.username, token, account.id
        )
        await services.audit.record("password_change_requested", ip=client_ip(request), user_id=account.id)
        return MessageResponse(message="Password change verification sent to your email")

    @router.get("/verify-password-change", response_model=MessageResponse)
    async def verify_password_change(
        request: Request,
        response: Response,
        token: str = Query(..., min_length=1),
        user_id: int = Query(..., alias="userId"),
        services: Services = Depends(get_services),
    ):
        pending = await redeem_link(services, token, user_id, TokenPurpose.PASSWORD_CHANGE)
        account = await services.accounts.change_password_final(user_id, pending["password_hash"])
        await services.mail.send_password_changed(account.email, account.username)
        await services.audit.record("password_changed", ip=client_ip(request), user_id=user_id)
        clear_session_cookies(response)
        return MessageResponse(
            message="Password changed successfully. Please log in with your new password.",
            logout=True,
        )

    @router.post("/change-email", response_model=MessageResponse)
    async def change_email(
        payload: ChangeEmailRequest,
        request: Request,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        account = await services.accounts.require(principal.account_id)
        if normalize_email(payload.current_email) != account.email:
            raise Unauthorized("Current email does not match your account", reason="email_mismatch")

        new_email = normalize_email(payload.new_email)
        if new_email == account.email:
            raise ValidationFailed("New email must differ from the current one", reason="email_unchanged")
        owner = await services.accounts.find_by_email(new_email)
        if owner is not None and owner.id != account.id:
            raise Conflict("Email already in use by another account", reason="email_taken")

        token = await services.tokens.issue(
            account.id,
            TokenPurpose.EMAIL_CHANGE,
            payload={"new_email": new_email, "current_email": account.email},
        )
        await services.mail.send_email_change_verification(
            new_email, account.username, token, account.id
        )
        await services.audit.record("email_change_requested", ip=client_ip(request), user_id=account.id)
        return MessageResponse(message="Email change verification sent to your new email address")

    @router.get("/verify-email-change", response_model=MessageResponse)
    async def verify_email_change(
        request: Request,
        response: Response,
        token: str = Query(..., min_length=1),
        user_id: int = Query(..., alias="userId"),
        services: Services = Depends(get_services),
    ):
        pending = await redeem_link(services, token, user_id, TokenPurpose.EMAIL_CHANGE)
        account = await services.accounts.change_email_final(user_id, pending["new_email"])
        await services.mail.send_email_changed(pending["current_email"], account.email)
        await services.audit.record("email_changed", ip=client_ip(request), user_id=user_id)
        clear_session_cookies(response)
        return MessageResponse(
            message="Email changed successfully. Please log in with your new email.", logout=True
        )

    @router.get("/api-keys", response_model=ApiKeySlotsResponse)
    async def get_api_keys(
        principal: Principal = Depends(require_session), services: Services = Depends(get_services)
    ):
        return slots_response(await services.apikeys.get_slots(principal.account_id))

    @router.post("/generate-api-key", response_model=ApiKeyChangeResponse)
    async def generate_api_key(
        payload: GenerateKeyRequest,
        request: Request,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        slot = await services.apikeys.generate(principal.account_id, payload.key_type)
        await services.audit.record(
            "api_key_generated", ip=client_ip(request), user_id=principal.account_id, key_type=slot.slot.value
        )
        return ApiKeyChangeResponse(
            message=f"New {slot.slot.value} API Key generated successfully",
            apiKey=ApiKeySlotResponse(**slot.to_dict()),
        )

    @router.post("/toggle-api-key/{user_id}", response_model=ApiKeyChangeResponse)
    async def toggle_api_key(
        user_id: int,
        payload: ToggleKeyRequest,
        request: Request,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        check_key_owner(principal, user_id)
        slot = await services.apikeys.toggle(user_id, payload.key_type, payload.is_active)
        await services.audit.record(
            "api_key_toggled",
            ip=client_ip(request),
            user_id=user_id,
            actor_id=principal.account_id,
            key_type=slot.slot.value,
            is_active=slot.is_active,
        )
        return ApiKeyChangeResponse(
            message=f"API key {'activated' if slot.is_active else 'deactivated'} successfully",
            apiKey=ApiKeySlotResponse(**slot.to_dict()),
        )

    @router.delete("/delete-api-key/{user_id}")
    async def delete_api_key(
        user_id: int,
        request: Request,
        key_type: KeySlot = Query(...),
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        check_key_owner(principal, user_id)
        await services.apikeys.revoke(user_id, key_type)
        await services.audit.record(
            "api_key_deleted",
            ip=client_ip(request),
            user_id=user_id,
            actor_id=principal.account_id,
            key_type=key_type.value,
        )
        slots = slots_response(await services.apikeys.get_slots(user_id))
        return {"message": "API Key deleted successfully", "success": True, "apiKeys": slots}

    @router.delete("/delete-account", response_model=MessageResponse)
    async def delete_account(
        request: Request,
        response: Response,
        principal: Principal = Depends(require_session),
        services: Services = Depends(get_services),
    ):
        await services.accounts.delete_account(principal.account_id)
        await services.sessions.end_session(principal.claims)
        await services.audit.record("account_deleted", ip=client_ip(request), user_id=principal.account_id)
        clear_session_cookies(response)
        return MessageResponse(message="Account deleted successfully", logout=True)

    @router.get("/session", response_model=SessionInfoResponse)
    async def session_info(principal: Optional[Principal] = Depends(optional_session)):
        """Principal introspection for front-end gating."""
        if principal is None:
            return SessionInfoResponse(authenticated=False)
        return SessionInfoResponse(
            authenticated=True,
            userId=principal.account_id,
            username=principal.username,
            role=principal.role.value,
            isAdmin=principal.is_admin,
            verified=principal.verified,
            expiresAt=principal.claims.expires_at.isoformat(),
        )

    @router.get("/admin-check")
    async def admin_check(principal: Optional[Principal] = Depends(optional_session)):
        return {"isAdmin": bool(principal and principal.is_admin)}

    return router
