from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class UserOut(BaseModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    is_super_user: bool
    realm_id: str | None = None
    client_id: str | None = None
    is_active: bool


class UserRoleOut(BaseModel):
    id: str
    name: str
    realm_id: str
    is_active: bool


class UserDetailOut(UserOut):
    roles: list[UserRoleOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class UsersListResponse(BaseModel):
    users: list[UserDetailOut]
    total: int


class UserCreate(BaseModel):
    email: EmailStr
    # optional for realm users: a password is generated and mailed when omitted
    password: str | None = Field(default=None, min_length=6, max_length=72)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    is_super_user: bool = False
    realm_id: str | None = Field(default=None, max_length=64)
    client_id: str | None = Field(default=None, max_length=64)
    role_ids: list[str] = Field(default_factory=list)


class UserCreateResponse(BaseModel):
    user: UserDetailOut
    # returned once, only when it was generated
    generated_password: str | None = None
    email_sent: bool | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=6, max_length=72)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    is_super_user: bool | None = None
    realm_id: str | None = Field(default=None, max_length=64)
    client_id: str | None = Field(default=None, max_length=64)
    # replaces the whole role set when given
    role_ids: list[str] | None = None


class UserDeleteResponse(BaseModel):
    deleted: bool
    user_id: str


class UserStatsOut(BaseModel):
    total_users: int
    super_users: int
    realm_users: int
    active_users: int
    inactive_users: int
