from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ClientEndpoints(BaseModel):
    # hosts a client's users may target; empty means unrestricted
    allowed_hosts: list[str] = Field(default_factory=list)

    @field_validator("allowed_hosts")
    @classmethod
    def _strip_hosts(cls, value: list[str]) -> list[str]:
        return [h.strip() for h in value if h and h.strip()]


class SmtpConfig(BaseModel):
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    from_email: str | None = None
    secure: bool = False


class ClientCreate(BaseModel):
    realm_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    endpoints: ClientEndpoints = Field(default_factory=ClientEndpoints)
    redirect_urls: list[str] = Field(default_factory=list)
    sso_enabled: bool = False
    twofa_enabled: bool = False
    smtp_config: SmtpConfig | None = None
    is_active: bool = True


class ClientUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    endpoints: ClientEndpoints | None = None
    redirect_urls: list[str] | None = None
    sso_enabled: bool | None = None
    twofa_enabled: bool | None = None
    smtp_config: SmtpConfig | None = None
    is_active: bool | None = None


class ClientOut(BaseModel):
    id: str
    realm_id: str
    realm_name: str | None = None
    name: str
    description: str | None
    client_id: str
    endpoints: dict[str, Any]
    redirect_urls: list[str]
    sso_enabled: bool
    twofa_enabled: bool
    # password is never echoed back
    smtp_config: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ClientWithSecretOut(ClientOut):
    client_secret: str


class ClientsListResponse(BaseModel):
    clients: list[ClientOut]


class ClientDeleteResponse(BaseModel):
    deleted: bool
    client_id: str
    revoked_sessions: int


class ClientStatsOut(BaseModel):
    total_clients: int
    active_clients: int
    sso_enabled_clients: int
    twofa_enabled_clients: int
