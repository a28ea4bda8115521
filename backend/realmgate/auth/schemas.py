from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from realmgate.roles.schemas import Method
from realmgate.users.schemas import UserOut


class LoginRequest(BaseModel):
    email: EmailStr
    # prevent bcrypt crash on long input
    password: str = Field(min_length=1, max_length=72)


class ClientLoginRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=64)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=20)


class ValidateOtpRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=4, max_length=12, pattern=r"^\d+$")
    purpose: Literal["2fa"] = "2fa"


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResendOtpRequest(BaseModel):
    email: EmailStr
    purpose: Literal["2fa", "reset"] = "2fa"


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=4, max_length=12, pattern=r"^\d+$")
    new_password: str = Field(min_length=6, max_length=72)


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=72)
    new_password: str = Field(alias="newPassword", min_length=6, max_length=72)


class ValidateRequestRequest(BaseModel):
    host: str = Field(min_length=1, max_length=255)
    route: str = Field(min_length=1, max_length=2048)
    method: Method

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        return value.upper() if isinstance(value, str) else value


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut


class OtpRequiredResponse(BaseModel):
    requires_otp: bool = True
    email_sent: bool
    message: str


class ClientSessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    is_client_session: bool = True
    client_id: str
    realm_id: str
    realm_name: str | None = None


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class MessageResponse(BaseModel):
    message: str


class ValidateRequestResponse(BaseModel):
    allowed: bool
    reason: str
    matched_role_id: str | None = None


class PrincipalResponse(BaseModel):
    is_client_session: bool
    expires_at: datetime
    user: UserOut | None = None
    client_id: str | None = None
    realm_id: str | None = None


class TokenInfo(BaseModel):
    id: str
    is_client_session: bool
    expires_at: datetime
    refresh_expires_at: datetime
    created_at: datetime
    last_used_at: datetime | None = None


class TokensListResponse(BaseModel):
    tokens: list[TokenInfo]
