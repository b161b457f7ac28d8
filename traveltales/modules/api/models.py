"""
TravelTales request and response models.

These models define the JSON bodies accepted and returned by the
authentication, admin and data-plane routes.
"""

from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..apikeys import KeySlot

# Request Models (API Input)


class RegisterRequest(BaseModel):
    """Request to create an account."""

    username: str = Field(..., description="Unique login name", min_length=3, max_length=30)
    email: str = Field(..., description="Email address", max_length=254)
    password: str = Field(..., description="Account password", min_length=1, max_length=128)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)

    @field_validator("username", "email")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=254)


class ResendVerificationRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=254)


class ResetPasswordRequest(BaseModel):
    """Redeem a password-reset link."""

    token: str = Field(..., min_length=1)
    user_id: int = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    password: str = Field(..., min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)
    email: Optional[str] = Field(None, description="Ignored; confirmation goes to the account email")


class ChangeEmailRequest(BaseModel):
    current_email: str = Field(..., min_length=1, max_length=254)
    new_email: str = Field(..., min_length=1, max_length=254)


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class GenerateKeyRequest(BaseModel):
    key_type: KeySlot = Field(..., description="primary or secondary")


class ToggleKeyRequest(BaseModel):
    """Set a slot's active flag; accepts the camelCase field front ends send."""

    key_type: KeySlot
    is_active: bool = Field(..., validation_alias=AliasChoices("isActive", "is_active", "active"))


class AdminToggleKeyRequest(BaseModel):
    is_active: bool = Field(..., validation_alias=AliasChoices("is_active", "isActive", "active"))


# Response Models (API Output)


class MessageResponse(BaseModel):
    message: str
    logout: bool = False


class RegisterResponse(BaseModel):
    message: str
    userId: int
    username: str
    verified: bool = False


class LoginResponse(BaseModel):
    message: str
    userId: int
    username: str
    role: str
    verified: bool = True
    csrfToken: str


class ApiKeySlotResponse(BaseModel):
    """One API key slot; an empty slot has null value and timestamps."""

    key_type: KeySlot
    key_value: Optional[str] = None
    is_active: bool = False
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    last_generated_at: Optional[str] = None


class ApiKeySlotsResponse(BaseModel):
    primary: ApiKeySlotResponse
    secondary: ApiKeySlotResponse


class ApiKeyChangeResponse(BaseModel):
    message: str
    apiKey: ApiKeySlotResponse


class ProfileResponse(BaseModel):
    id: int
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    verified: bool = False
    role: str = "user"
    created_at: Optional[str] = None
    api_keys: Optional[ApiKeySlotsResponse] = None


class SessionInfoResponse(BaseModel):
    authenticated: bool
    userId: Optional[int] = None
    username: Optional[str] = None
    role: Optional[str] = None
    isAdmin: bool = False
    verified: Optional[bool] = None
    expiresAt: Optional[str] = None


class AdminUsersResponse(BaseModel):
    users: List[ProfileResponse]
    count: int


class Currency(BaseModel):
    code: str
    name: str = ""
    symbol: str = ""


class Country(BaseModel):
    name: str
    capital: str = "N/A"
    currency: Optional[Currency] = None
    languages: List[str] = Field(default_factory=list)
    flag: str = ""


def slots_response(slots: Dict[str, object]) -> ApiKeySlotsResponse:
    """Build the two-slot response from ApiKeyManager.get_slots()."""
    return ApiKeySlotsResponse(
        **{name: ApiKeySlotResponse(**slot.to_dict()) for name, slot in slots.items()}
    )
