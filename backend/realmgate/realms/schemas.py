from datetime import datetime

from pydantic import BaseModel, Field

REALM_NAME_PATTERN = r"^[A-Za-z0-9_-]{1,100}$"


class RealmCreate(BaseModel):
    name: str = Field(pattern=REALM_NAME_PATTERN, description="Letters, digits, '_' and '-' only")
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = True


class RealmUpdate(BaseModel):
    name: str | None = Field(default=None, pattern=REALM_NAME_PATTERN)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class RealmOut(BaseModel):
    id: str
    name: str
    description: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    client_count: int = 0


class RealmsListResponse(BaseModel):
    realms: list[RealmOut]


class RealmDeleteResponse(BaseModel):
    deleted: bool
    realm_id: str
