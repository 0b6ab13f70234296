"""Authentication-related schemas."""
from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field

from mystore.models.user import UserRole


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class TokenUser(BaseModel):
    id: int
    email: str
    role: UserRole


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: TokenUser


class RecoveryRequest(BaseModel):
    email: str | None = None


class ChangePasswordRequest(BaseModel):
    token: str | None = None
    new_password: str | None = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("newPassword", "new_password"),
    )


class MessageResponse(BaseModel):
    message: str
